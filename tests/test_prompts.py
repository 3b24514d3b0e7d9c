"""Tests for the console and auto-approve prompters."""

from posture_audit.prompts import AutoApprovePrompter, ConsolePrompter


def _answers(*replies):
    replies = iter(replies)
    return lambda prompt: next(replies)


def test_choose_one_retries_until_valid(capsys):
    prompter = ConsolePrompter(input_func=_answers("7", "x", "2"))
    assert prompter.choose_one(["rg-a", "rg-b"], "Resource group") == "rg-b"
    assert capsys.readouterr().out.count("Invalid choice") == 2


def test_choose_one_cancel():
    prompter = ConsolePrompter(input_func=_answers("0"))
    assert prompter.choose_one(["rg-a"], "Resource group") is None


def test_choose_one_without_options():
    assert ConsolePrompter(input_func=_answers()).choose_one([], "VM") is None


def test_choose_one_uses_label(capsys):
    prompter = ConsolePrompter(input_func=_answers("1"), label=lambda vm: vm["name"])
    prompter.choose_one([{"name": "vm-1"}], "VM")
    assert "1. vm-1" in capsys.readouterr().out


def test_confirm_accepts_yes_and_y():
    assert ConsolePrompter(input_func=_answers("YES")).confirm("Apply?")
    assert ConsolePrompter(input_func=_answers(" y ")).confirm("Apply?")
    assert not ConsolePrompter(input_func=_answers("no")).confirm("Apply?")
    assert not ConsolePrompter(input_func=_answers("")).confirm("Apply?")


def test_auto_approve():
    prompter = AutoApprovePrompter()
    assert prompter.confirm("Apply?")
    assert prompter.choose_one(["a", "b"], "Pick") == "a"
    assert prompter.choose_one([], "Pick") is None
