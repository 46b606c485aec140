"""Tests for the command-line tools."""
import io
import json

import pytest

from conftest import SNAPSHOT
from rt_connections.cli import build_parser, config_from_args, convert, main, main_json, parse_headers
from rt_connections.config import Config
from rt_connections.errors import ConfigError
from rt_connections.serializers.csv_format import CSV_COLUMNS


@pytest.fixture
def feed_file(tmp_path, feed_message):
    path = tmp_path / "feed.pb"
    path.write_bytes(feed_message.SerializeToString())
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("GTFS_STATIC", "GTFSRT_FEED", "OUTPUT_FORMAT", "STORE_KIND", "HISTORY_PATH"):
        monkeypatch.delenv(name, raising=False)


class TestArguments:

    def test_parse_headers(self):
        assert parse_headers('{"apiKey": "secret", "n": 1}') == {"apiKey": "secret", "n": "1"}
        assert parse_headers(None) == {}
        with pytest.raises(ConfigError):
            parse_headers("{apiKey")
        with pytest.raises(ConfigError):
            parse_headers('["apiKey"]')

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("OUTPUT_FORMAT", "csv")
        monkeypatch.setenv("GTFS_STATIC", "env.zip")
        args = build_parser().parse_args(["-r", "feed.pb", "-f", "turtle", "-S", "DiskStore"])

        config = config_from_args(args)

        assert config.feed_path == "feed.pb"
        assert config.static_path == "env.zip"
        assert config.output_format == "turtle"
        assert config.store_kind == "DiskStore"

    def test_sources_required(self):
        with pytest.raises(ConfigError, match="GTFS-RT"):
            config_from_args(build_parser().parse_args(["-s", "gtfs.zip"]), Config())
        with pytest.raises(ConfigError, match="GTFS feed"):
            config_from_args(build_parser().parse_args(["-r", "feed.pb"]), Config())

    def test_unknown_format_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["-r", "feed.pb", "-f", "xml"])


class TestConvert:

    def test_json(self, feed_file, static_dir):
        out = io.StringIO()
        config = Config(feed_path=str(feed_file), static_path=str(static_dir))

        count = convert(config, {}, out=out)

        records = [json.loads(line) for line in out.getvalue().splitlines()]
        assert count == len(records) == 4
        assert {r["trip"] for r in records} == {"http://example.org/trips/T1/20240101"}
        assert sorted(r["departureDelay"] for r in records) == [0, 0, 120, 120]

    def test_csv_with_grep_and_disk_store(self, feed_file, static_dir, tmp_path):
        out = io.StringIO()
        config = Config(
            feed_path=str(feed_file),
            static_path=str(static_dir),
            output_format="csv",
            store_kind="DiskStore",
            store_path=str(tmp_path / "index.sqlite"),
        )

        assert convert(config, {}, grep=True, out=out) == 4
        assert out.getvalue().splitlines()[0] == ",".join(CSV_COLUMNS)

    def test_history_between_runs(self, feed_file, static_dir, tmp_path):
        config = Config(
            feed_path=str(feed_file),
            static_path=str(static_dir),
            history_path=str(tmp_path / "history.sqlite"),
        )
        assert convert(config, {}, out=io.StringIO()) == 4
        assert convert(config, {}, out=io.StringIO()) == 0

    def test_uris_template(self, feed_file, static_dir, tmp_path):
        templates = tmp_path / "uris.json"
        templates.write_text(json.dumps({
            "stop": "urn:stop:{stops.stop_id}",
            "route": "urn:route:{routes.route_short_name}",
            "trip": "urn:trip:{trips.trip_short_name}:{trips.startTime(yyyyMMdd)}",
            "connection": "urn:connection:{trips.trip_short_name}:{connection.departureTime(HHmm)}",
        }))
        out = io.StringIO()
        config = Config(feed_path=str(feed_file), static_path=str(static_dir),
                        uris_template_path=str(templates))

        convert(config, {}, out=out)

        first = json.loads(out.getvalue().splitlines()[0])
        assert first["trip"] == "urn:trip:1001:20240101"
        assert first["route"] == "urn:route:IC"
        assert first["@id"].startswith("urn:connection:1001:")


class TestMain:

    def test_success(self, feed_file, static_dir, capsys):
        code = main(["-r", str(feed_file), "-s", str(static_dir), "-f", "ntriples", "--log-level", "INFO"])
        captured = capsys.readouterr()
        assert code == 0
        assert "<http://example.org/connections/20240101/S1/T1>" in captured.out
        assert "Starting GTFS-RT to Linked Connections" in captured.err

    def test_missing_sources(self, capsys):
        assert main(["--log-level", "INFO"]) == 2
        assert "--help" in capsys.readouterr().err

    def test_bad_headers(self, feed_file, static_dir):
        assert main(["-r", str(feed_file), "-s", str(static_dir), "-H", "{", "--log-level", "INFO"]) == 2

    def test_missing_static_file(self, feed_file, static_dir, capsys):
        (static_dir / "stops.txt").unlink()
        assert main(["-r", str(feed_file), "-s", str(static_dir), "--log-level", "INFO"]) == 1
        assert "stops.txt" in capsys.readouterr().err

    def test_unfetchable_feed(self, tmp_path, static_dir):
        assert main(["-r", str(tmp_path / "missing.pb"), "-s", str(static_dir), "--log-level", "INFO"]) == 1


def test_main_json(feed_file, capsys):
    assert main_json(["-r", str(feed_file)]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["header"]["timestamp"] == str(SNAPSHOT)
    assert data["entity"][0]["trip_update"]["trip"]["trip_id"] == "T1"
