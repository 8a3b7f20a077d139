"""Tests for config loading, operator commands, service wiring and the HTTP API."""

import asyncio
import json
import os
import sys

import httpx
import pytest

from conftest import FakeInbox, FakeNotifier, FakeProbe, FakeTrigger


@pytest.fixture
def config(tmp_path):
    from pulsekeeper.config import LoopConfig
    return LoopConfig(data_dir=tmp_path / "data", owner_chat_id="owner-1")


@pytest.fixture
def fake_runtime():
    from pulsekeeper.runtime import HostRuntime
    return HostRuntime(
        inbox=FakeInbox(),
        wake_trigger=FakeTrigger(),
        notifier=FakeNotifier(),
        health_probe=FakeProbe([True] * 10),
        process_status=FakeProbe([True] * 10),
    )


# ═══════════════════════════════════════════════════════════════
# 1. CONFIG
# ═══════════════════════════════════════════════════════════════

class TestConfig:

    def test_missing_file_gives_defaults(self, tmp_path, monkeypatch):
        from pulsekeeper.config import load_config

        monkeypatch.delenv("PULSEKEEPER_TELEGRAM_BOT_TOKEN", raising=False)
        config = load_config(tmp_path / "nope.yaml")
        assert config.enabled
        assert config.heartbeat_interval_s == 60
        assert config.think_interval_s == 3600
        assert config.service_url is None
        assert config.telegram_bot_token is None

    def test_yaml_values(self, tmp_path):
        from pulsekeeper.config import load_config

        path = tmp_path / "config.yaml"
        path.write_text(
            "heartbeat_interval_s: 30\n"
            "owner_chat_id: '42'\n"
            "service_url: http://localhost:9000/health\n"
            f"data_dir: {tmp_path / 'state'}\n"
            "wake_command: [agentctl, wake, '{text}']\n"
            "ledger_newest_first: true\n"
        )
        config = load_config(path)
        assert config.heartbeat_interval_s == 30
        assert config.owner_chat_id == "42"
        assert config.service_url == "http://localhost:9000/health"
        assert config.data_dir == tmp_path / "state"
        assert config.wake_command == ["agentctl", "wake", "{text}"]
        assert config.ledger_newest_first

    @pytest.mark.parametrize("content", [
        "heartbeat_interval_s: [unclosed",
        "- just\n- a list\n",
        "heartbeat_interval_s: -5\n",
    ])
    def test_bad_config_falls_back(self, tmp_path, content):
        from pulsekeeper.config import load_config

        path = tmp_path / "config.yaml"
        path.write_text(content)
        assert load_config(path).heartbeat_interval_s == 60

    def test_env_token_overrides(self, tmp_path, monkeypatch):
        from pulsekeeper.config import load_config

        path = tmp_path / "config.yaml"
        path.write_text("telegram_bot_token: from-file\n")
        monkeypatch.setenv("PULSEKEEPER_TELEGRAM_BOT_TOKEN", "from-env")
        assert load_config(path).telegram_bot_token == "from-env"


# ═══════════════════════════════════════════════════════════════
# 2. COMMANDS
# ═══════════════════════════════════════════════════════════════

class TestRewardCommand:

    @pytest.mark.parametrize("amount", ["abc", "0", "-5", 0, -100, "", "12.5", None])
    def test_invalid_amount_rejected_without_mutation(self, ledger, amount):
        from pulsekeeper.commands import record_reward

        result = record_reward(ledger, amount, "nope")
        assert not result.ok
        assert "Invalid amount" in result.text
        assert ledger.state.balance.token_credits == 0
        assert ledger.state.history == []
        assert not ledger.dirty
        assert not ledger.file_path.exists()

    def test_reward_recorded_and_saved(self, ledger):
        from pulsekeeper.commands import record_reward

        result = record_reward(ledger, "50,000", "finished the weekly report")
        assert result.ok
        assert "+50,000 tokens" in result.text
        assert "Current balance: 50,000 tokens" in result.text

        entry = ledger.state.history[-1]
        assert entry.kind.value == "owner_reward"
        assert entry.description == "finished the weekly report"
        assert not ledger.dirty
        assert ledger.file_path.exists()

    def test_default_description(self, ledger):
        from pulsekeeper.commands import record_reward

        record_reward(ledger, 10)
        assert ledger.state.history[-1].description == "Owner reward"


class TestLlmUsageHook:

    def test_sums_input_output_cache_read(self, ledger):
        from pulsekeeper.commands import record_llm_usage

        entries = record_llm_usage(
            ledger, {"input": 1_200, "output": 300, "cache_read": 500},
            model="m-large", provider="acme", session_key="sess-9")

        assert ledger.state.today.tokens_spent == 2_000
        assert ledger.state.today.calls == 1
        assert len(entries) == 1
        assert entries[0].kind.value == "llm_inference"
        assert entries[0].meta == {"model": "m-large", "provider": "acme", "session": "sess-9"}
        assert entries[0].description == "m-large inference"

    def test_camel_case_cache_key(self, ledger):
        from pulsekeeper.commands import record_llm_usage

        record_llm_usage(ledger, {"input": 10, "cacheRead": 5})
        assert ledger.state.today.tokens_spent == 15

    @pytest.mark.parametrize("usage", [None, {}, {"input": 0, "output": 0}])
    def test_zero_usage_ignored(self, ledger, usage):
        from pulsekeeper.commands import record_llm_usage

        assert record_llm_usage(ledger, usage) == []
        assert ledger.state.today.calls == 0
        assert not ledger.dirty


# ═══════════════════════════════════════════════════════════════
# 3. SERVICE
# ═══════════════════════════════════════════════════════════════

class TestLoopService:

    def test_default_tasks(self, config, fake_runtime):
        from pulsekeeper.service import LoopService

        service = LoopService(config, fake_runtime)
        infos = service.list_tasks()
        assert [t.name for t in infos] == ["economy-check", "periodic-thinking"]
        assert all(t.status == "pending" for t in infos)
        assert infos[1].interval_ticks == 60

    def test_optional_tasks(self, config, fake_runtime):
        from pulsekeeper.service import LoopService

        cfg = config.model_copy(update={
            "service_url": "http://svc/health",
            "process_name": "worker",
            "think_interval_s": 0,
            "health_interval_ticks": 3,
        })
        names = {t.name: t.interval_ticks for t in LoopService(cfg, fake_runtime).list_tasks()}
        assert names == {"economy-check": 1, "service-health": 3, "process-watch": 5}

    def test_health_task_skipped_without_probe(self, config):
        from pulsekeeper.runtime import HostRuntime
        from pulsekeeper.service import LoopService

        cfg = config.model_copy(update={"service_url": "http://svc/health"})
        service = LoopService(cfg, HostRuntime(inbox=FakeInbox()))
        assert "service-health" not in [t.name for t in service.list_tasks()]

    def test_start_and_stop(self, config, fake_runtime):
        from pulsekeeper.service import LoopService

        service = LoopService(config, fake_runtime)
        service.ledger.record_income("owner_reward", tokens=5)  # discarded by load()

        async def scenario():
            await service.start()
            await asyncio.sleep(0.05)
            running = service.scheduler.is_running
            await service.stop()
            return running

        assert asyncio.run(scenario()) is True
        assert service.scheduler.tick_count == 1
        assert service.ledger.state.balance.token_credits == 0
        assert all(t.status == "active" for t in service.list_tasks())

    def test_disabled_does_not_tick(self, config, fake_runtime):
        from pulsekeeper.service import LoopService

        service = LoopService(config.model_copy(update={"enabled": False}), fake_runtime)

        async def scenario():
            await service.start()
            await service.stop()

        asyncio.run(scenario())
        assert service.scheduler.tick_count == 0

    def test_pid_file_held_while_running(self, config, fake_runtime):
        from pulsekeeper.service import LoopService, is_daemon_running

        service = LoopService(config.model_copy(update={"enabled": False}), fake_runtime)
        assert not is_daemon_running(config.data_dir)

        async def scenario():
            await service.start()
            held = service.pid_file.read_text()
            running = is_daemon_running(config.data_dir)
            await service.stop()
            return held, running

        held, running = asyncio.run(scenario())
        assert held == str(os.getpid())
        assert running is True
        assert not service.pid_file.exists()
        assert not is_daemon_running(config.data_dir)

    def test_register_and_unregister_custom_task(self, config, fake_runtime):
        from pulsekeeper.heartbeat.tasks import HeartbeatTask, TaskResult
        from pulsekeeper.service import LoopService

        async def check():
            return TaskResult()

        service = LoopService(config, fake_runtime)
        service.register_task(HeartbeatTask(name="custom", run=check, interval_ticks=10))
        assert "custom" in [t.name for t in service.list_tasks()]
        assert service.unregister_task("custom")
        assert "custom" not in [t.name for t in service.list_tasks()]

    def test_reports(self, config, fake_runtime):
        from pulsekeeper.service import LoopService

        service = LoopService(config, fake_runtime)
        assert "Heartbeat: stopped" in service.status_report()
        assert service.ledger_report() == "📒 No transactions yet"

    def test_build_runtime(self, config):
        from pulsekeeper.messaging import TelegramNotifier
        from pulsekeeper.runtime import CommandWakeTrigger, FileInbox
        from pulsekeeper.service import build_runtime

        runtime = build_runtime(config)
        assert isinstance(runtime.inbox, FileInbox)
        assert runtime.inbox.path == config.data_dir / "inbox.jsonl"
        assert runtime.wake_trigger is None
        assert isinstance(runtime.notifier, TelegramNotifier)

        cfg = config.model_copy(update={"wake_command": ["agentctl", "{text}"]})
        assert isinstance(build_runtime(cfg).wake_trigger, CommandWakeTrigger)


# ═══════════════════════════════════════════════════════════════
# 4. DEFAULT CAPABILITIES
# ═══════════════════════════════════════════════════════════════

class TestDefaultCapabilities:

    def test_file_inbox_appends_jsonl(self, tmp_path):
        from pulsekeeper.runtime import FileInbox

        inbox = FileInbox(tmp_path / "nested" / "inbox.jsonl")
        asyncio.run(inbox.enqueue_message("first"))
        asyncio.run(inbox.enqueue_message("second"))

        lines = inbox.path.read_text().splitlines()
        assert [json.loads(line)["text"] for line in lines] == ["first", "second"]

    def test_command_trigger_substitutes_text(self, tmp_path):
        from pulsekeeper.runtime import CommandWakeTrigger

        out = tmp_path / "woken.txt"
        trigger = CommandWakeTrigger([
            sys.executable, "-c",
            "import sys; open(sys.argv[1], 'w').write(sys.argv[2])",
            str(out), "{text}",
        ])
        asyncio.run(trigger.trigger("wake up", timeout=10))
        assert out.read_text() == "wake up"

    def test_command_trigger_failures(self):
        from pulsekeeper.runtime import CommandWakeTrigger, WakeTriggerError

        with pytest.raises(ValueError):
            CommandWakeTrigger([])

        failing = CommandWakeTrigger([sys.executable, "-c", "import sys; sys.exit(3)"])
        with pytest.raises(WakeTriggerError):
            asyncio.run(failing.trigger("x", timeout=10))

        hanging = CommandWakeTrigger([sys.executable, "-c", "import time; time.sleep(5)"])
        with pytest.raises(WakeTriggerError):
            asyncio.run(hanging.trigger("x", timeout=0.2))

        missing = CommandWakeTrigger(["/nonexistent/agentctl"])
        with pytest.raises(WakeTriggerError):
            asyncio.run(missing.trigger("x", timeout=1))

    def test_pm2_missing_binary(self):
        from pulsekeeper.runtime import Pm2ProcessStatus, ProcessQueryError

        query = Pm2ProcessStatus(pm2_bin="/nonexistent/pm2")
        with pytest.raises(ProcessQueryError):
            asyncio.run(query.is_running("worker", timeout=1))

    def test_telegram_unconfigured(self, monkeypatch):
        from pulsekeeper.messaging import TelegramNotifier

        monkeypatch.delenv("PULSEKEEPER_TELEGRAM_BOT_TOKEN", raising=False)
        notifier = TelegramNotifier()
        assert not notifier.is_configured()
        assert asyncio.run(notifier.send("42", "hi")) is False

    def test_telegram_send(self):
        from pulsekeeper.messaging import MAX_MESSAGE_LEN, TelegramNotifier

        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"ok": True, "result": {}})

        async def scenario():
            notifier = TelegramNotifier(bot_token="123:abc")
            notifier._http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            ok = await notifier.send("42", "x" * 5000)
            await notifier.close()
            return ok

        assert asyncio.run(scenario()) is True
        path, body = seen[0]
        assert path == "/bot123:abc/sendMessage"
        assert body["chat_id"] == "42"
        assert len(body["text"]) == MAX_MESSAGE_LEN

    def test_telegram_api_error(self):
        from pulsekeeper.messaging import TelegramNotifier

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"ok": False, "description": "Forbidden"})

        async def scenario():
            notifier = TelegramNotifier(bot_token="123:abc")
            notifier._http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            return await notifier.send("42", "hi")

        assert asyncio.run(scenario()) is False


# ═══════════════════════════════════════════════════════════════
# 5. HTTP API
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def client(config, fake_runtime):
    from fastapi.testclient import TestClient

    from pulsekeeper.service import LoopService
    from pulsekeeper.web import create_app

    service = LoopService(config.model_copy(update={"enabled": False}), fake_runtime)
    with TestClient(create_app(service)) as c:
        yield c


class TestWebApi:

    def test_status(self, client):
        resp = client.get("/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["ledger"]["balance"]["token_credits"] == 0
        assert data["ledger"]["balance"]["tier"] == "hibernate"
        assert "history" not in data["ledger"]
        assert data["heartbeat"]["running"] is False

    def test_reward_then_ledger(self, client):
        resp = client.post("/reward", json={"amount": 250_000, "description": "launch"})
        assert resp.status_code == 200
        assert resp.json()["balance"] == 250_000
        assert resp.json()["tier"] == "normal"

        entries = client.get("/ledger", params={"count": 5}).json()["entries"]
        assert len(entries) == 1
        assert entries[0]["kind"] == "owner_reward"
        assert entries[0]["description"] == "launch"

    @pytest.mark.parametrize("amount", ["lots", -10, 0])
    def test_invalid_reward(self, client, amount):
        resp = client.post("/reward", json={"amount": amount})
        assert resp.status_code == 400
        assert client.get("/status").json()["ledger"]["balance"]["token_credits"] == 0

    def test_decisions(self, client):
        resp = client.post("/decisions", json={
            "trigger": "economy-check",
            "reasoning": "balance is low",
            "actions": [{"type": "plan", "description": "pause non-essential work"}],
            "outcome": "paused",
            "tokens_used": 1_500,
        })
        assert resp.status_code == 200
        decision_id = resp.json()["id"]
        assert decision_id.startswith("dec_")

        decisions = client.get("/decisions").json()["decisions"]
        assert decisions[0]["id"] == decision_id
        assert decisions[0]["tier"] == "hibernate"
        assert decisions[0]["actions"][0]["type"] == "plan"

    def test_invalid_decision_action(self, client):
        resp = client.post("/decisions", json={
            "trigger": "x", "reasoning": "y",
            "actions": [{"type": "teleport", "description": "nope"}],
        })
        assert resp.status_code == 422

    def test_tasks(self, client):
        tasks = client.get("/tasks").json()["tasks"]
        assert [t["name"] for t in tasks] == ["economy-check", "periodic-thinking"]
