import pytest

from conftest import build_eml
from pst2pdf import DEFAULT_INPUT_DIR, DEFAULT_OUTPUT_DIR, build_parser, main


def test_help_exits_cleanly(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--help"])

    assert excinfo.value.code == 0
    assert "--readpst-bin" in capsys.readouterr().out


def test_parser_maps_short_and_long_flags():
    args = build_parser().parse_args(
        ["mail.pst", "-o", "out.pdf", "-R", "/opt/readpst", "-w", "work", "--keep-workdir", "--max-emails", "25"]
    )

    assert args.input == "mail.pst"
    assert args.output == "out.pdf"
    assert args.readpst_bin == "/opt/readpst"
    assert args.workdir == "work"
    assert args.keep_workdir
    assert args.max_emails == 25
    assert args.input_dir == DEFAULT_INPUT_DIR
    assert args.output_dir == DEFAULT_OUTPUT_DIR


def test_negative_max_emails_is_a_usage_error(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["mail.pst", "--max-emails", "-3"])

    assert excinfo.value.code == 2


def test_missing_input_archive_exits_with_one(tmp_path, capsys):
    assert main([str(tmp_path / "absent.pst")]) == 1
    assert "Input .pst not found." in capsys.readouterr().err


def test_single_archive_conversion(tmp_path, fake_readpst, make_pst, capsys):
    archive = make_pst("mail.pst", [build_eml("Hello", "World", "Mon, 1 Jan 2024 10:00:00 +0000")])
    output = tmp_path / "pdf" / "mail.pdf"

    code = main([str(archive), "-o", str(output), "-R", str(fake_readpst)])

    assert code == 0
    assert output.exists()
    assert f"Wrote {output}" in capsys.readouterr().out


def test_single_archive_tool_failure_exits_with_one(tmp_path, fake_readpst, make_pst, capsys):
    archive = make_pst("broken.pst", fail=True, exit_code=4, stderr="unsupported format\n")

    code = main([str(archive), "-R", str(fake_readpst)])

    assert code == 1
    assert "unsupported format" in capsys.readouterr().err


def test_batch_mode_with_no_archives_creates_default_folders(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)

    assert main([]) == 0

    assert (tmp_path / DEFAULT_INPUT_DIR).is_dir()
    assert (tmp_path / DEFAULT_OUTPUT_DIR).is_dir()
    assert "No .pst files found" in capsys.readouterr().out


def test_batch_mode_reports_failures_in_exit_code(tmp_path, fake_readpst, make_pst):
    input_dir = tmp_path / "archives"
    output_dir = tmp_path / "pdfs"
    make_pst("good.pst", [build_eml("Fine")], directory=input_dir)
    make_pst("bad.pst", fail=True, directory=input_dir)

    code = main(["-i", str(input_dir), "-O", str(output_dir), "-R", str(fake_readpst), "--no-logs"])

    assert code == 1
    assert (output_dir / "good.pdf").exists()
    assert not (output_dir / "logs").exists()


def test_batch_mode_success(tmp_path, fake_readpst, make_pst):
    input_dir = tmp_path / "archives"
    output_dir = tmp_path / "pdfs"
    logs_dir = tmp_path / "run-logs"
    make_pst("one.pst", [build_eml("One")], directory=input_dir)

    code = main(["-i", str(input_dir), "-O", str(output_dir), "-R", str(fake_readpst), "--log-dir", str(logs_dir)])

    assert code == 0
    assert (output_dir / "one.pdf").exists()
    assert list(logs_dir.glob("run_*.log"))
