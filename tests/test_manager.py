"""Tests for Settings, NullSettings and the loading entry points."""

import logging
from pathlib import Path

import pytest
import yaml
from layered_settings import ClearPolicy
from layered_settings import ConfigFileError
from layered_settings import ConfigPaths
from layered_settings import InvalidSettingsOperationError
from layered_settings import NullSettings
from layered_settings import Settings
from layered_settings import SettingsFile
from layered_settings import load_default_settings
from layered_settings import load_machine_wide_settings
from layered_settings import load_settings_given_config_paths
from layered_settings import load_specific_settings
from layered_settings.nodes import AddElement


def keys(section):
    return [child.key for child in section.children]


class TestSettingsMerge:
    """Test the merged view of a precedence chain."""

    @pytest.fixture
    def chain(self, temp_dir, write_config):
        """Create a nearer and a farther settings file."""
        near = write_config(
            temp_dir / "near",
            '  <config>\n    <add key="k" value="near" />\n    <add key="only-near" value="1" />\n  </config>\n',
        )
        far = write_config(
            temp_dir / "far",
            '  <config>\n    <add key="k" value="far" />\n    <add key="only-far" value="2" />\n  </config>\n'
            '  <packageRestore>\n    <add key="enabled" value="True" />\n  </packageRestore>\n',
        )
        return near, far

    @pytest.fixture
    def settings(self, chain):
        """Create Settings over the chain."""
        return load_settings_given_config_paths(chain)

    def test_nearer_value_wins(self, settings):
        """Test a key defined by both files reads the nearer value."""
        assert settings.sections["config"].get_child_element("key", "k").value == "near"

    def test_sections_are_unioned(self, settings):
        """Test sections and entries from every file are visible."""
        assert keys(settings.sections["config"]) == ["k", "only-near", "k", "only-far"]
        assert keys(settings.sections["packageRestore"]) == ["enabled"]

    def test_merged_children_keep_their_origin(self, settings, chain):
        """Test merged entries still belong to the file they came from."""
        near, far = chain
        entry = settings.sections["config"].get_child_element("key", "only-far")
        assert entry.origin.config_file_path == far

    def test_rebuild_is_idempotent(self, settings):
        """Test rebuilding twice yields the same view."""
        before = settings.get_merged_settings()
        settings.rebuild()
        settings.rebuild()
        assert settings.get_merged_settings() == before

    def test_priority_and_paths(self, settings, chain):
        """Test files are listed nearest first."""
        assert settings.get_config_file_paths() == list(chain)
        assert settings.get_config_roots() == [path.parent for path in chain]
        assert settings.priority[0].next is settings.priority[1]

    def test_duplicate_file_stops_chain(self, chain):
        """Test a repeated path ends enumeration."""
        near, far = chain
        files = [SettingsFile(near.parent), SettingsFile(far.parent), SettingsFile(near.parent)]
        assert Settings(files).get_config_file_paths() == [near, far]

    def test_same_instance_twice_keeps_chain(self, chain):
        """Test listing one file object twice does not drop the files between."""
        near, far = chain
        near_file = SettingsFile(near.parent)
        far_file = SettingsFile(far.parent)

        settings = Settings([near_file, far_file, near_file])

        assert settings.get_config_file_paths() == [near, far]
        assert keys(settings.sections["config"]) == ["k", "only-near", "k", "only-far"]

    def test_requires_files(self):
        """Test an empty chain is a contract violation."""
        with pytest.raises(ValueError):
            Settings([])

    def test_merged_settings_and_yaml(self, settings):
        """Test the merged view exports as nested mappings."""
        expected = {
            "config": {"k": "near", "only-near": "1", "only-far": "2"},
            "packageRestore": {"enabled": "True"},
        }
        assert settings.get_merged_settings() == expected
        assert yaml.safe_load(settings.to_yaml()) == expected


class TestClearAcrossFiles:
    """Test <clear /> across the precedence chain."""

    def test_nearer_clear_hides_farther_entries(self, temp_dir, write_config):
        """Test an empty cleared section in the nearer file hides farther sources."""
        near = write_config(temp_dir / "near", "  <packageSources>\n    <clear />\n  </packageSources>\n")
        far = write_config(temp_dir / "far", '  <packageSources>\n    <add key="X" value="https://x" />\n  </packageSources>\n')

        for policy in ClearPolicy:
            settings = Settings([SettingsFile(near.parent), SettingsFile(far.parent)], policy)
            section = settings.sections["packageSources"]
            assert section.children == []
            assert section.is_cleared is True

    def test_farther_clear_erases_nearer_entries_by_default(self, temp_dir, write_config):
        """Test the default policy lets a farther marker reset the section."""
        near = write_config(temp_dir / "near", '  <packageSources>\n    <add key="a" value="https://a" />\n  </packageSources>\n')
        far = write_config(
            temp_dir / "far",
            '  <packageSources>\n    <clear />\n    <add key="b" value="https://b" />\n  </packageSources>\n',
        )

        settings = load_settings_given_config_paths([near, far])
        assert settings.clear_policy is ClearPolicy.ALWAYS
        assert keys(settings.sections["packageSources"]) == ["b"]

    def test_nearest_wins_policy(self, temp_dir, write_config):
        """Test a farther marker only stops files farther than itself."""
        near = write_config(temp_dir / "near", '  <packageSources>\n    <add key="a" value="https://a" />\n  </packageSources>\n')
        middle = write_config(
            temp_dir / "middle",
            '  <packageSources>\n    <clear />\n    <add key="b" value="https://b" />\n  </packageSources>\n',
        )
        far = write_config(temp_dir / "far", '  <packageSources>\n    <add key="c" value="https://c" />\n  </packageSources>\n')

        files = [SettingsFile(path.parent) for path in (near, middle, far)]
        settings = Settings(files, ClearPolicy.NEAREST_WINS)
        assert keys(settings.sections["packageSources"]) == ["a", "b"]

    def test_clear_in_non_clearable_section_is_ignored(self, temp_dir, write_config):
        """Test markers do nothing in sections that cannot be cleared."""
        near = write_config(temp_dir / "near", "  <custom>\n    <clear />\n  </custom>\n")
        far = write_config(temp_dir / "far", '  <custom>\n    <add key="x" value="1" />\n  </custom>\n')

        settings = load_settings_given_config_paths([near, far])
        assert keys(settings.sections["custom"]) == ["x"]
        assert settings.sections["custom"].is_cleared is False


class TestSettingsWrites:
    """Test writes routed through the merged view."""

    @pytest.fixture
    def files(self, temp_dir, write_config):
        """Create a nearer file, a farther file and a machine-wide file."""
        write_config(temp_dir / "near", '  <config>\n    <add key="a" value="1" />\n  </config>\n')
        write_config(temp_dir / "far", '  <config>\n    <add key="b" value="2" />\n  </config>\n')
        write_config(
            temp_dir / "machine",
            '  <config>\n    <add key="m" value="3" />\n  </config>\n'
            '  <apikeys>\n    <add key="https://x" value="secret" />\n  </apikeys>\n',
            "machine.config",
        )
        return [
            SettingsFile(temp_dir / "near"),
            SettingsFile(temp_dir / "far"),
            SettingsFile(temp_dir / "machine", "machine.config", is_machine_wide=True),
        ]

    @pytest.fixture
    def settings(self, files):
        """Create Settings over the files."""
        return Settings(files)

    def test_update_goes_to_owning_file(self, settings, files):
        """Test changing a farther value saves only that file."""
        near, far, _ = files
        near_before = near.config_file_path.read_bytes()
        saved = []
        near.subscribe(saved.append)
        far.subscribe(saved.append)

        entry = settings.sections["config"].get_child_element("key", "b")
        assert entry.try_update("20") is True

        assert saved == [far]
        assert near.config_file_path.read_bytes() == near_before
        assert 'value="20"' in far.config_file_path.read_text()
        assert settings.sections["config"].get_child_element("key", "b").value == "20"

    def test_machine_wide_entry_is_read_only(self, settings, files):
        """Test values from machine-wide files cannot be changed."""
        machine = files[2]
        before = machine.config_file_path.read_bytes()

        entry = settings.sections["config"].get_child_element("key", "m")
        assert entry.try_update("30") is False
        assert entry.try_remove() is False
        assert machine.config_file_path.read_bytes() == before

    def test_add_child_goes_to_nearest_contributor(self, settings, files):
        """Test new entries in a merged section land in the nearest file holding it."""
        assert settings.sections["config"].try_add_child(AddElement("c", "4")) is True
        assert 'key="c"' in files[0].config_file_path.read_text()
        assert keys(settings.sections["config"])[:2] == ["a", "c"]

    def test_add_child_refused_when_nearest_contributor_is_machine_wide(self, settings):
        """Test a section only defined machine-wide cannot take new entries."""
        assert settings.sections["apikeys"].try_add_child(AddElement("https://y", "s")) is False

    def test_try_create_section_uses_nearest_writable_file(self, settings, files):
        """Test new sections go to the first non-machine-wide file."""
        assert settings.try_create_section("packageSources") is True
        assert "packageSources" in files[0].root_element.sections
        assert "packageSources" in settings.sections

    def test_try_create_section_existing(self, settings):
        """Test creating a section the nearest file already has fails."""
        assert settings.try_create_section("config") is False

    def test_try_create_section_requires_name(self, settings):
        """Test empty name is a contract violation."""
        with pytest.raises(ValueError):
            settings.try_create_section("")

    def test_try_create_section_without_writable_file(self, files):
        """Test a chain of machine-wide files cannot take new sections."""
        settings = Settings([files[2]])
        assert settings.default_output_file is None
        assert settings.try_create_section("config2") is False

    def test_try_create_section_failed_write_can_be_retried(self, settings, files):
        """Test a section whose save failed is not kept, so a retry succeeds."""
        near = files[0]
        path = near.config_file_path
        original = path.read_bytes()
        path.unlink()
        path.mkdir()

        assert settings.try_create_section("packageSources") is False
        assert "packageSources" not in near.root_element.sections
        assert "packageSources" not in settings.sections

        path.rmdir()
        path.write_bytes(original)
        assert settings.try_create_section("packageSources") is True
        assert "packageSources" in path.read_text()
        assert "packageSources" in settings.sections

    def test_failed_add_is_not_written_by_a_later_save(self, settings, files):
        """Test an entry whose save failed stays out of the file and the merged view."""
        near = files[0]
        path = near.config_file_path
        original = path.read_bytes()
        path.unlink()
        path.mkdir()

        with pytest.raises(ConfigFileError):
            settings.sections["config"].try_add_child(AddElement("ghost", "x"))
        assert settings.sections["config"].get_child_element("key", "ghost") is None

        path.rmdir()
        path.write_bytes(original)
        assert settings.sections["config"].get_child_element("key", "a").try_update("10") is True

        assert "ghost" not in path.read_text()
        assert "ghost" not in settings.get_merged_settings()["config"]

    def test_remove_section_from_every_file(self, files):
        """Test removing a merged section removes it from each contributor."""
        settings = Settings(files[:2])
        assert settings.sections["config"].try_remove() is True

        assert "config" not in settings.sections
        assert "config" not in files[0].root_element.sections
        assert "config" not in files[1].root_element.sections

    def test_remove_section_refused_with_machine_wide_contributor(self, settings, files):
        """Test a section backed by a machine-wide file cannot be removed."""
        assert settings.sections["config"].try_remove() is False
        assert "config" in files[0].root_element.sections


class TestSettingsNotification:
    """Test change notification."""

    @pytest.fixture
    def settings(self, temp_dir, write_config):
        """Create Settings over two files."""
        near = write_config(temp_dir / "near", '  <config>\n    <add key="a" value="1" />\n  </config>\n')
        far = write_config(temp_dir / "far", '  <config>\n    <add key="b" value="2" />\n  </config>\n')
        return load_settings_given_config_paths([near, far])

    def test_fires_once_per_save(self, settings):
        """Test subscribers are called after each save."""
        calls = []
        settings.subscribe(lambda: calls.append(1))

        settings.sections["config"].get_child_element("key", "b").try_update("3")
        assert calls == [1]

    def test_unsubscribe(self, settings):
        """Test removed callbacks are not called."""
        calls = []

        def callback():
            calls.append(1)

        settings.subscribe(callback)
        settings.unsubscribe(callback)
        settings.try_create_section("other")
        assert calls == []

    def test_nested_save_rebuilds_without_reentering(self, settings):
        """Test a subscriber that saves does not trigger itself again."""
        calls = []

        def callback():
            calls.append(1)
            if len(calls) == 1:
                settings.try_create_section("nested")

        settings.subscribe(callback)
        settings.sections["config"].try_add_child(AddElement("c", "3"))

        assert calls == [1]
        assert "nested" in settings.sections


class TestNullSettings:
    """Test NullSettings."""

    def test_is_empty(self):
        """Test every read returns nothing."""
        settings = NullSettings()
        assert settings.sections == {}
        assert settings.get_config_file_paths() == []
        assert settings.get_config_roots() == []
        assert settings.get_merged_settings() == {}
        assert yaml.safe_load(settings.to_yaml()) == {}

    def test_try_create_section_raises(self):
        """Test writes are invalid operations."""
        with pytest.raises(InvalidSettingsOperationError):
            NullSettings().try_create_section("config")


class TestLoadDefaultSettings:
    """Test discovery of the precedence chain."""

    @pytest.fixture
    def paths(self, temp_dir):
        """Create injected user and machine-wide locations."""
        return ConfigPaths(user=temp_dir / "user" / "settings.config", machine_wide=temp_dir / "machine")

    def test_walks_up_then_user_then_machine(self, temp_dir, write_config, paths):
        """Test the chain order is nearest directory first."""
        solution = write_config(temp_dir / "solution")
        project = write_config(temp_dir / "solution" / "src" / "project", file_name="Settings.config")
        machine = write_config(paths.machine_wide, file_name="vendor.config")

        settings = load_default_settings(project.parent, paths=paths)

        assert settings.get_config_file_paths() == [project, solution, paths.user, machine]
        assert [f.is_machine_wide for f in settings.priority] == [False, False, False, True]

    def test_creates_user_file(self, temp_dir, paths):
        """Test the user-wide file is created on demand."""
        settings = load_default_settings(temp_dir / "empty", paths=paths)

        assert paths.user.exists()
        assert settings.default_output_file.config_file_path == paths.user

    def test_user_file_from_environment(self, temp_dir, isolated_user_settings):
        """Test $LAYERED_SETTINGS_HOME locates the user-wide file."""
        settings = load_default_settings(temp_dir)
        assert settings.get_config_file_paths()[-1] == isolated_user_settings / "settings.config"

    def test_skips_unparsable_files(self, temp_dir, write_config, paths, caplog):
        """Test a broken file is logged and left out of the chain."""
        good = write_config(temp_dir / "root")
        broken = temp_dir / "root" / "child" / "settings.config"
        broken.parent.mkdir(parents=True)
        broken.write_text("<configuration>")

        with caplog.at_level(logging.WARNING):
            settings = load_default_settings(broken.parent, paths=paths)

        assert broken not in settings.get_config_file_paths()
        assert good in settings.get_config_file_paths()
        assert "Skipping settings file" in caplog.text

    def test_config_file_name_loads_only_that_file(self, temp_dir, write_config, paths):
        """Test an explicit file name replaces discovery."""
        write_config(temp_dir / "project")
        custom = write_config(temp_dir / "project", file_name="custom.config")

        settings = load_default_settings(temp_dir / "project", "custom.config", paths=paths)
        assert settings.get_config_file_paths() == [custom]

    def test_config_file_name_must_exist(self, temp_dir, paths):
        """Test an explicit missing file is an error."""
        with pytest.raises(ConfigFileError, match="does not exist"):
            load_default_settings(temp_dir, "missing.config", paths=paths)

    def test_clear_policy_is_passed_through(self, temp_dir, paths):
        """Test the policy reaches the merged view."""
        settings = load_default_settings(temp_dir, paths=paths, clear_policy=ClearPolicy.NEAREST_WINS)
        assert settings.clear_policy is ClearPolicy.NEAREST_WINS


class TestOtherLoaders:
    """Test the remaining entry points."""

    def test_load_specific_settings(self, temp_dir, write_config):
        """Test a single named file is loaded."""
        path = write_config(temp_dir, file_name="only.config")
        assert load_specific_settings(temp_dir, "only.config").get_config_file_paths() == [path]

    def test_load_specific_settings_requires_name(self, temp_dir):
        """Test empty file name is a contract violation."""
        with pytest.raises(ValueError):
            load_specific_settings(temp_dir, "")

    def test_given_config_paths_empty(self):
        """Test no paths yields NullSettings."""
        assert isinstance(load_settings_given_config_paths([]), NullSettings)

    def test_given_config_paths_propagates_errors(self, temp_dir):
        """Test a malformed explicit file is an error."""
        path = temp_dir / "settings.config"
        path.write_text("<notvalid />")
        with pytest.raises(ConfigFileError):
            load_settings_given_config_paths([path])

    def test_machine_wide_settings_deepest_first(self, temp_dir, write_config):
        """Test *.config files are collected from the deepest directory up."""
        root = temp_dir / "machine"
        top = write_config(root, file_name="a.config")
        middle = write_config(root / "v1", file_name="b.Config")
        deepest = write_config(root / "v1" / "tool", file_name="c.config")

        settings = load_machine_wide_settings(root, "v1", "tool")

        assert settings.get_config_file_paths() == [deepest, middle, top]
        assert all(f.is_machine_wide for f in settings.priority)

    def test_machine_wide_settings_none_found(self, temp_dir):
        """Test an empty directory yields NullSettings."""
        assert isinstance(load_machine_wide_settings(temp_dir), NullSettings)

    def test_machine_wide_settings_requires_root(self):
        """Test empty root is a contract violation."""
        with pytest.raises(ValueError):
            load_machine_wide_settings("")

    def test_machine_wide_settings_appended_to_default(self, temp_dir, write_config):
        """Test explicit machine-wide settings close the chain."""
        machine = write_config(temp_dir / "machine", file_name="m.config")
        machine_wide = load_machine_wide_settings(temp_dir / "machine")
        user = Path(temp_dir / "user" / "settings.config")

        settings = load_default_settings(
            temp_dir / "work", machine_wide_settings=machine_wide, paths=ConfigPaths(user=user)
        )

        assert settings.get_config_file_paths()[-2:] == [user, machine]
        assert machine_wide.priority[0].next is None
