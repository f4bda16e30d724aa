"""
Tests for configuration and plan loading.
"""

import textwrap
from pathlib import Path

import pytest

from archsetup.core.config.loader import ConfigError, find_config_file, load_settings
from archsetup.core.config.plan_loader import (
    PlanError,
    load_default_plan,
    load_plan,
    parse_csv_plan,
    parse_yaml_plan,
)
from archsetup.core.models.plan import first_aur_step_index, provides_aur_helper
from archsetup.core.models.step import (
    BuildPackage,
    InstallAurPackage,
    InstallPipPackage,
    InstallRepoPackage,
    RemoveOrphans,
    SystemUpdate,
    WriteFile,
)

# ── Settings ─────────────────────────────────────────────────────────


class TestFindConfigFile:
    def test_finds_in_current_dir(self, tmp_path: Path):
        (tmp_path / "archsetup.yml").write_text("aur_helper: yay\n")
        assert find_config_file(tmp_path) == (tmp_path / "archsetup.yml").resolve()

    def test_walks_up(self, tmp_path: Path):
        (tmp_path / "archsetup.yml").write_text("aur_helper: yay\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == (tmp_path / "archsetup.yml").resolve()

    def test_not_found(self, tmp_path: Path):
        empty = tmp_path / "empty"
        empty.mkdir()
        assert find_config_file(empty) is None


class TestLoadSettings:
    def test_defaults_without_file(self):
        settings = load_settings(None)
        assert settings.aur_helper == "yay"
        assert settings.home.is_absolute()
        assert settings.plan == "default"

    def test_full_file(self, tmp_path: Path):
        config = tmp_path / "archsetup.yml"
        config.write_text(textwrap.dedent(f"""\
            home: {tmp_path}
            escalation: none
            aur_helper: paru
            pip_command: [python, -m, pip]
            step_delay: 2
            default_timeout: 600
            key_refresh_timeout: 10
            state_dir: ~/.state/archsetup
            critical_steps: [repo:git]
            plan: progs.csv
        """))
        s = load_settings(config)
        assert s.home == tmp_path
        assert s.escalation.method == "none"
        assert s.aur_helper == "paru"
        assert s.pip_command == ["python", "-m", "pip"]
        assert s.step_delay == 2
        assert s.default_timeout == 600
        assert s.key_refresh_timeout == 10
        assert s.resolved_state_dir == tmp_path / ".state" / "archsetup"
        assert s.critical_steps == ["repo:git"]
        assert s.plan == "progs.csv"

    def test_nested_under_archsetup_key(self, tmp_path: Path):
        config = tmp_path / "archsetup.yml"
        config.write_text("archsetup:\n  aur_helper: paru\n")
        assert load_settings(config).aur_helper == "paru"

    def test_overrides_win(self, tmp_path: Path):
        config = tmp_path / "archsetup.yml"
        config.write_text("plan: default\n")
        assert load_settings(config, overrides={"plan": "x.yml"}).plan == "x.yml"
        assert load_settings(config, overrides={"plan": None}).plan == "default"

    def test_empty_file(self, tmp_path: Path):
        config = tmp_path / "archsetup.yml"
        config.write_text("")
        assert load_settings(config).aur_helper == "yay"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        config = tmp_path / "archsetup.yml"
        config.write_text("aur_helper: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(config)

    def test_not_a_mapping(self, tmp_path: Path):
        config = tmp_path / "archsetup.yml"
        config.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(config)

    def test_invalid_value(self, tmp_path: Path):
        config = tmp_path / "archsetup.yml"
        config.write_text("escalation: doas\n")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_settings(config)

    def test_unknown_keys_ignored(self, tmp_path: Path):
        config = tmp_path / "archsetup.yml"
        config.write_text("colour: true\n")
        assert load_settings(config).aur_helper == "yay"


# ── Plans ────────────────────────────────────────────────────────────


PROGS_CSV = textwrap.dedent("""\
    #TAG,NAME IN REPO (or git url),PURPOSE (should be a verb phrase to complete a sentence)
    ,xorg-server,"is the graphical server."
    A,google-chrome,"is the web browser."
    G,https://github.com/lukesmithxyz/dwm.git,"is the window manager."
    P,qdarkstyle,"is needed for a theme."
    X,vim,"unknown tags mean repo."
""")


class TestCsvPlan:
    def test_tags(self):
        plan = parse_csv_plan(PROGS_CSV)
        kinds = [type(s) for s in plan.steps]
        assert kinds == [InstallRepoPackage, InstallAurPackage, BuildPackage, InstallPipPackage, InstallRepoPackage]
        assert plan.step_ids == ["repo:xorg-server", "aur:google-chrome", "build:dwm", "pip:qdarkstyle", "repo:vim"]

    def test_note_becomes_description(self):
        plan = parse_csv_plan(PROGS_CSV)
        assert plan.get("aur:google-chrome").description == "is the web browser."

    def test_lowercase_tags(self):
        plan = parse_csv_plan("a,spotify,music\n")
        assert isinstance(plan.steps[0], InstallAurPackage)

    def test_missing_identifier(self):
        with pytest.raises(PlanError, match="no identifier"):
            parse_csv_plan("A,,nothing\n")

    def test_duplicates(self):
        with pytest.raises(PlanError, match="duplicate"):
            parse_csv_plan(",vim,editor\n,vim,again\n")


class TestYamlPlan:
    def test_mapping(self):
        plan = parse_yaml_plan(textwrap.dedent("""\
            name: laptop
            steps:
              - kind: update
              - {kind: repo, name: vim, critical: true}
              - kind: file
                path: ~/.vimrc
                content: "set nu\\n"
        """))
        assert plan.name == "laptop"
        assert isinstance(plan.steps[0], SystemUpdate)
        assert plan.get("repo:vim").critical
        assert isinstance(plan.steps[2], WriteFile)
        assert plan.steps[2].content == "set nu\n"

    def test_bare_list(self):
        plan = parse_yaml_plan("- {kind: orphans}\n", name="maint")
        assert plan.name == "maint"
        assert isinstance(plan.steps[0], RemoveOrphans)

    def test_empty(self):
        assert len(parse_yaml_plan("")) == 0

    def test_invalid_step(self):
        with pytest.raises(PlanError, match="step 2"):
            parse_yaml_plan("- {kind: repo, name: vim}\n- {kind: repo}\n")

    def test_invalid_yaml(self):
        with pytest.raises(PlanError, match="Invalid YAML"):
            parse_yaml_plan("steps: [unclosed\n")

    def test_steps_not_list(self):
        with pytest.raises(PlanError, match="must be a list"):
            parse_yaml_plan("steps: vim\n")

    def test_scalar(self):
        with pytest.raises(PlanError):
            parse_yaml_plan("just text\n")

    def test_duplicates(self):
        with pytest.raises(PlanError, match="duplicate"):
            parse_yaml_plan("- {kind: repo, name: vim}\n- {kind: repo, name: vim}\n")


class TestLoadPlan:
    def test_csv_file(self, tmp_path: Path):
        (tmp_path / "progs.csv").write_text(PROGS_CSV)
        plan = load_plan(str(tmp_path / "progs.csv"))
        assert plan.name == "progs"
        assert len(plan) == 5

    def test_relative_to_base_dir(self, tmp_path: Path):
        (tmp_path / "plan.yml").write_text("- {kind: repo, name: vim}\n")
        assert load_plan("plan.yml", base_dir=tmp_path).step_ids == ["repo:vim"]

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(PlanError, match="not found"):
            load_plan(str(tmp_path / "nope.yml"))

    def test_url(self, monkeypatch):
        monkeypatch.setattr(
            "archsetup.core.config.plan_loader._fetch",
            lambda url, timeout=30: PROGS_CSV,
        )
        plan = load_plan("https://raw.githubusercontent.com/x/y/master/progs.csv")
        assert plan.name == "progs"
        assert isinstance(plan.steps[1], InstallAurPackage)

    def test_url_yaml(self, monkeypatch):
        monkeypatch.setattr(
            "archsetup.core.config.plan_loader._fetch",
            lambda url, timeout=30: "- {kind: repo, name: vim}\n",
        )
        assert load_plan("https://example.com/plan.yml?raw=1").step_ids == ["repo:vim"]

    def test_default(self):
        assert load_plan("default").name == "default"


class TestDefaultPlan:
    def test_loads(self):
        plan = load_default_plan()
        assert len(plan) > 20

    def test_update_first(self):
        assert isinstance(load_default_plan().steps[0], SystemUpdate)

    def test_helper_bootstrap_is_critical_and_first(self):
        plan = load_default_plan()
        build = plan.get("build:yay-bin")
        assert build is not None and build.critical
        first_aur = first_aur_step_index(plan)
        assert any(provides_aur_helper(s, "yay") for s in plan.steps[:first_aur])

    def test_update_not_critical(self):
        assert not load_default_plan().get("update").critical

    def test_contains_configuration(self):
        plan = load_default_plan()
        i3 = plan.get("file:~/.config/i3/config")
        assert i3 is not None and "set $mod Mod4" in i3.content
        smb = plan.get("file:/etc/samba/smb.conf")
        assert smb.mode == "append" and smb.privileged
        assert plan.get("clone:~/.dotfiles") is not None
        assert plan.steps[-1].id == "clean-cache"

    def test_helper_sources_removed(self):
        assert load_default_plan().get("build:yay-bin").keep_sources is False

    def test_dotfiles_applied_after_clone(self):
        plan = load_default_plan()
        ids = plan.step_ids
        apply = plan.get("apply-dotfiles")
        assert apply is not None
        assert ids.index("clone:~/.dotfiles") < ids.index("apply-dotfiles")
        assert apply.cwd == "~"
        assert ".dotfiles" in apply.argv[-1]

    def test_grub_theme_steps(self):
        plan = load_default_plan()
        ids = plan.step_ids
        grub = ["grub-theme-install", "grub-backup", "grub-theme-set", "grub-mkconfig"]
        assert [i for i in ids if i.startswith("grub-")] == grub
        for step_id in grub:
            step = plan.get(step_id)
            assert step.privileged
            assert step.only_if or step.unless
        assert "GRUB_THEME=" in plan.get("grub-theme-set").argv[-1]
        assert plan.get("grub-mkconfig").argv == ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"]

    def test_conda_gated_on_conda(self):
        conda = load_default_plan().get("conda-maintenance")
        assert conda is not None
        assert conda.only_if == ["sh", "-c", "command -v conda"]
        assert "conda-forge pandoc" in conda.argv[-1]
        assert not conda.privileged
