import os

import pytest

from pdash.prompt import Prompt, PromptMode
from pdash.variables import Variable, VarFlag, VariableError, VariableManager


@pytest.fixture
def prompt():
    return Prompt(PromptMode.NONE, user="alice", hostname="box", cwd="/w", is_root=False)


@pytest.fixture
def env():
    return {"FOO": "bar"}


@pytest.fixture
def vm(env, prompt):
    return VariableManager(environ=env, prompt=prompt)


def test_environment_imported(vm):
    assert vm.get("FOO") == "bar"
    assert ("FOO", "bar") in vm.exported()
    assert "FOO=bar" in vm.environment()


def test_defaults(vm):
    assert vm.get("PS2") == "> "
    assert vm.get("IFS") == " \t\n"
    assert vm.get("?") == "0"
    assert vm.get("$") == str(os.getpid())
    assert vm.get("PATH") == "/usr/local/bin:/usr/bin:/bin"
    assert vm.get("HOME") == "/"


def test_existing_path_and_home_kept(prompt):
    vm = VariableManager(environ={"PATH": "/opt/bin", "HOME": "/home/alice"}, prompt=prompt)
    assert vm.get("PATH") == "/opt/bin"
    assert vm.get("HOME") == "/home/alice"


def test_prompt_variables_follow_prompt(vm, prompt):
    assert vm.get("PS1") == prompt.raw()
    assert vm.get("FPS1") == prompt.formatted()


def test_prompt_variable_is_readonly(vm):
    with pytest.raises(VariableError):
        vm.set("PS1", "> ")


def test_get_missing_is_empty(vm):
    assert vm.get("NOPE") == ""
    assert not vm.exists("NOPE")


def test_set_exported_updates_environ(vm, env):
    vm.set("NEW", "value", VarFlag.EXPORT)
    assert vm.get("NEW") == "value"
    assert ("NEW", "value") in vm.exported()
    assert "NEW=value" in vm.environment()
    assert env["NEW"] == "value"


def test_set_unexported_leaves_environ(vm, env):
    vm.set("LOCAL", "value")
    assert vm.get("LOCAL") == "value"
    assert "LOCAL" not in env


def test_flags_are_merged(vm, env):
    vm.set("X", "1", VarFlag.EXPORT)
    vm.set("X", "2")
    assert env["X"] == "2"
    assert ("X", "2") in vm.exported()


def test_empty_name_rejected(vm):
    with pytest.raises(VariableError):
        vm.set("", "x")


def test_unset(vm, env):
    vm.unset("FOO")
    assert not vm.exists("FOO")
    assert "FOO" not in env


def test_unset_special_rejected(vm):
    with pytest.raises(VariableError):
        vm.unset("?")
    assert vm.exists("?")


def test_unset_missing(vm):
    with pytest.raises(KeyError):
        vm.unset("NOPE")


def test_export(vm, env):
    vm.set("LOCAL", "value")
    vm.export("LOCAL")
    assert env["LOCAL"] == "value"
    with pytest.raises(KeyError):
        vm.export("NOPE")


def test_set_readonly(vm):
    vm.set("R", "1")
    vm.set_readonly("R")
    with pytest.raises(VariableError):
        vm.set("R", "2")
    assert vm.get("R") == "1"
    with pytest.raises(VariableError):
        vm.unset("R")


def test_names_sorted(vm):
    names = vm.names()
    assert names == sorted(names)
    assert "FOO" in names and "PS1" in names


def test_update_special_vars(vm):
    vm.update_special_vars(3)
    assert vm.get("?") == "3"
    assert vm.get("$") == str(os.getpid())


def test_special_name_gets_special_flag(vm):
    vm.set("#", "2")
    with pytest.raises(VariableError):
        vm.unset("#")


def test_variable_set_value_readonly():
    var = Variable("A", "1", VarFlag.READONLY)
    with pytest.raises(VariableError):
        var.set_value("2")
    assert var.value == "1"


def test_variable_update_on_read():
    var = Variable("A", "old", VarFlag.UPDATE_ON_READ, lambda: "fresh")
    assert var.value == "fresh"


@pytest.mark.parametrize(
    "text,expected",
    [
        ("$FOO", "bar"),
        ("${FOO}x", "barx"),
        ("a$FOO.b", "abar.b"),
        ("$?", "0"),
        ("a$", "a$"),
        ("a $ b", "a $ b"),
        ("${unclosed", "${unclosed"),
        ("$MISSING!", "!"),
        ("$(unclosed", "$(unclosed"),
        ("`unclosed", "`unclosed"),
        ("plain", "plain"),
    ],
)
def test_expand(vm, text, expected):
    assert vm.expand(text) == expected


def test_expand_pid(vm):
    assert vm.expand("$$") == str(os.getpid())


def test_expand_command_substitution(vm):
    assert vm.expand("<$(echo hi)>") == "<hi>"
    assert vm.expand("<`echo hi`>") == "<hi>"


def test_run_command_substitution_keeps_newline(vm):
    assert vm.run_command_substitution("echo hi") == "hi\n"