import json

from shiftbot.config.loader import camel_to_snake, convert_keys, load_config, save_config, snake_to_camel
from shiftbot.config.schema import Config


def test_defaults():
    config = Config()
    assert config.agent.model == "gemini/gemini-2.5-flash"
    assert config.agent.max_iterations == 10
    assert config.agent.user_turn_limit == 5
    assert config.agent.fetch_cap == 50
    assert config.agent.timeout_seconds is None
    assert config.agent.system_prompt_interval == 3
    assert config.shifts.timezone == "Asia/Tokyo"
    assert config.history_path.name == "history"


def test_load_camel_case_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "agent": {"maxIterations": 4, "userTurnLimit": 2, "timeoutSeconds": 30},
        "provider": {"apiKey": "k", "extraHeaders": {"X-App-Code": "abc"}},
        "line": {"channelAccessToken": "t", "broadcastTo": "C1"},
    }), encoding="utf-8")

    config = load_config(path)

    assert config.agent.max_iterations == 4
    assert config.agent.user_turn_limit == 2
    assert config.agent.timeout_seconds == 30
    assert config.provider.api_key == "k"
    assert config.provider.extra_headers == {"X-App-Code": "abc"}
    assert config.line.broadcast_to == "C1"


def test_missing_or_corrupt_file_gives_defaults(tmp_path):
    assert load_config(tmp_path / "absent.json").agent.max_iterations == 10

    broken = tmp_path / "broken.json"
    broken.write_text("{nope", encoding="utf-8")
    assert load_config(broken).agent.max_iterations == 10


def test_save_round_trips_with_camel_case(tmp_path):
    path = tmp_path / "config.json"
    config = Config()
    config.agent.max_iterations = 7
    save_config(config, path)

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["agent"]["maxIterations"] == 7
    assert "historyDir" in raw["storage"]
    assert load_config(path).agent.max_iterations == 7


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SHIFTBOT_AGENT__MAX_ITERATIONS", "3")
    assert Config().agent.max_iterations == 3


def test_key_conversion_helpers():
    assert camel_to_snake("channelAccessToken") == "channel_access_token"
    assert snake_to_camel("system_prompt_interval") == "systemPromptInterval"
    assert convert_keys({"agent": [{"maxTokens": 1}]}) == {"agent": [{"max_tokens": 1}]}
