"""Tests for the command line entry point."""

from penplot.main import EXIT_FAILURE, EXIT_INVALID, EXIT_OK, main


def test_main_plots_file(tmp_path):
    plot = tmp_path / "square.hpgl"
    plot.write_text("IN;SP1;PU0,0;PD1000,0,1000,1000,0,1000,0,0;PU;SP0;")
    assert main(["--model", "7475A", "--paper", "A4", str(plot)]) == EXIT_OK


def test_main_identifies_simulated_device():
    assert main([]) == EXIT_OK


def test_main_rejects_unavailable_paper():
    assert main(["--model", "7440A", "--paper", "A3"]) == EXIT_INVALID


def test_main_missing_plot_file(tmp_path):
    assert main(["--model", "7475A", str(tmp_path / "missing.hpgl")]) == EXIT_FAILURE


def test_main_unsupported_instruction_in_file(tmp_path):
    plot = tmp_path / "paper.hpgl"
    plot.write_text("IN;PS4;")
    assert main(["--model", "7470A", str(plot)]) == EXIT_INVALID
