from drudge import config


class TestReadConfigFile:

    def test_file_values_override_defaults(self, tmpdir):
        # arrange
        path = tmpdir.join("drudge.ini")
        path.write("[database]\ndriver = mongo\nport = 27017\n\n[notify]\nenabled = true\n")

        # act
        result = config.read_config_file(str(path))

        # assert
        assert result["database"]["driver"] == "mongo"
        assert result["database"]["port"] == "27017"
        assert result["database"]["host"] == "localhost"
        assert config.as_bool(result["notify"]["enabled"])
        assert result["backend"]["max_retries"] == 5

    def test_defaults_not_mutated(self, tmpdir):
        # arrange
        path = tmpdir.join("drudge.ini")
        path.write("[scheduler]\ndefault_queue = chores\n")

        # act
        config.read_config_file(str(path))
        result = config._default_config

        # assert
        assert result["scheduler"]["default_queue"] == "general"


class TestReadDefaultConfig:

    def test_reads_env_path(self, tmpdir, monkeypatch):
        # arrange
        path = tmpdir.join("custom.ini")
        path.write("[backend]\nmax_concurrent = 3\n")
        monkeypatch.setenv("DRUDGE_CONFIG", str(path))

        # act
        result = config.read_default_config()

        # assert
        assert result["backend"]["max_concurrent"] == "3"

    def test_falls_back_on_defaults(self, tmpdir, monkeypatch):
        # arrange
        monkeypatch.setenv("DRUDGE_CONFIG", str(tmpdir.join("missing.ini")))
        monkeypatch.setenv("HOME", str(tmpdir))
        monkeypatch.chdir(tmpdir)

        # act
        result = config.read_default_config()

        # assert
        assert result["database"]["driver"] == "postgres"
        assert "port" not in result["database"]
        assert result["scheduler"]["default_queue"] == "general"


class TestAsBool:

    def test_values(self):
        # arrange
        cases = [
            ("true", True),
            ("Yes", True),
            ("1", True),
            (True, True),
            ("false", False),
            ("", False),
            ("0", False),
            (False, False),
        ]

        for value, expect in cases:
            # act
            result = config.as_bool(value)

            # assert
            assert result is expect
