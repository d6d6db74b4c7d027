from audiobpm import cli
from audiobpm.constants import CONFIDENCE_THRESHOLD


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])
    assert args.device is None
    assert args.timeout == 15.0
    assert args.threshold == CONFIDENCE_THRESHOLD
    assert not args.direct


def test_parser_device_index_or_name() -> None:
    parser = cli.build_parser()
    assert parser.parse_args(["--device", "3"]).device == 3
    assert parser.parse_args(["--device", "USB Mic"]).device == "USB Mic"


def test_list_devices(monkeypatch, capsys) -> None:
    levels = []
    monkeypatch.setattr(cli, "configure_logging", levels.append)
    monkeypatch.setattr(cli, "list_input_devices", lambda: [(2, "USB Mic")])
    assert cli.main(["--list-devices", "--verbose"]) == 0
    assert "USB Mic" in capsys.readouterr().out
    assert levels == ["DEBUG"]
