import pytest

import main

pytestmark = pytest.mark.integration


def test_parse_args_defaults():
    args = main.parse_args(["What is RAG?"])
    assert args.query == "What is RAG?"
    assert args.user_id == "cli"
    assert not args.offline
    assert args.failure_rate == 0.0


def test_offline_run_prints_answer_and_agent_summary(capsys):
    exit_code = main.main(["What is RAG?", "--offline", "--show-agents"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "=== Agents ===" in out
    for role in ("analyst", "summarizer", "fact_checker", "classifier"):
        assert f"- {role} (" in out
    assert "Contexts used: 3" in out
    assert "[starting]" in out
    assert "[completed]" in out
