# tests/test_report_files.py
"""
Report file and CLI tests.

- Parses the generated HTML report with BeautifulSoup and checks rows, risk label and escaping.
- Checks the JSON, CSV and Markdown files next to it.
- Drives main() end to end, including --fail-on and the size ceiling.
"""

import csv
import json
import os

import pytest
from bs4 import BeautifulSoup

import main
from contract_scanner import scan
from utils import load_source_file, save_report


def test_html_report_lists_findings(tmp_path, vulnerable_vault):
    report = scan(vulnerable_vault)
    paths = save_report(report, source_name="Vault.sol", out_dir=str(tmp_path))
    html_path = paths["html"]
    assert os.path.exists(html_path)

    with open(html_path, "r", encoding="utf-8") as fh:
        soup = BeautifulSoup(fh, "html.parser")

    header_text = soup.find("h2").get_text(strip=True)
    assert "Scan Report" in header_text and "Vault.sol" in header_text
    assert soup.find(id="risk-label").get_text(strip=True) == report.risk_label

    rows = soup.find("tbody").find_all("tr")
    assert len(rows) == len(report.findings)
    rule_cells = [r.find_all("td")[1].get_text(strip=True) for r in rows]
    assert "reentrancy" in rule_cells


def test_html_escapes_source(tmp_path):
    src = """pragma solidity 0.8.19;
contract Game {
    function finish() external {
        require(address(this).balance == 10 ether && 1 < 2);
    }
}"""
    report = scan(src)
    paths = save_report(report, source_name="Game.sol", out_dir=str(tmp_path))
    with open(paths["html"], "r", encoding="utf-8") as fh:
        raw_html = fh.read()
    assert "1 &lt; 2" in raw_html
    soup = BeautifulSoup(raw_html, "html.parser")
    snippets = [pre.get_text() for pre in soup.find_all("pre")]
    assert any("1 < 2" in s for s in snippets)


def test_json_csv_markdown_files(tmp_path, vulnerable_vault):
    report = scan(vulnerable_vault)
    paths = save_report(report, source_name="contracts/Vault.sol", out_dir=str(tmp_path))
    assert os.path.basename(paths["json"]).endswith("-Vault.json")

    with open(paths["json"], "r", encoding="utf-8") as fh:
        data = json.load(fh)
    assert data["source_file"] == "contracts/Vault.sol"
    assert data["risk_label"] == report.risk_label
    assert len(data["findings"]) == len(report.findings)

    with open(paths["csv"], "r", encoding="utf-8", newline="") as fh:
        rows = list(csv.DictReader(fh))
    assert [r["rule_id"] for r in rows] == [f.rule_id for f in report.findings]

    with open(paths["markdown"], "r", encoding="utf-8") as fh:
        assert fh.read().startswith("# Smart Contract Security Report")


def test_load_source_file(tmp_path):
    path = tmp_path / "A.sol"
    path.write_text("contract A {}\n", encoding="utf-8")
    assert load_source_file(str(path)) == "contract A {}\n"
    with pytest.raises(FileNotFoundError):
        load_source_file(str(tmp_path / "missing.sol"))
    bad = tmp_path / "bad.sol"
    bad.write_bytes(b"\xff\xfe\xfa")
    with pytest.raises(ValueError):
        load_source_file(str(bad))


def test_cli_writes_reports(tmp_path, vulnerable_vault):
    src = tmp_path / "Vault.sol"
    src.write_text(vulnerable_vault, encoding="utf-8")
    out_dir = tmp_path / "reports"
    main.main([str(src), "--report-dir", str(out_dir), "--print-table"])
    names = os.listdir(out_dir)
    assert sorted(os.path.splitext(n)[1] for n in names) == [".csv", ".html", ".json", ".md"]


def test_cli_fail_on(tmp_path, vulnerable_vault, guarded_vault):
    bad = tmp_path / "Vault.sol"
    bad.write_text(vulnerable_vault, encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main.main([str(bad), "--no-save", "--fail-on", "critical"])
    assert exc.value.code == 1

    good = tmp_path / "Safe.sol"
    good.write_text(guarded_vault, encoding="utf-8")
    main.main([str(good), "--no-save", "--fail-on", "critical"])


def test_cli_size_ceiling(tmp_path, vulnerable_vault):
    src = tmp_path / "Vault.sol"
    src.write_text(vulnerable_vault, encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main.main([str(src), "--no-save", "--max-input-size", "10"])
    assert "exceeds the limit" in str(exc.value.code)


def test_options_resolution(monkeypatch):
    monkeypatch.setenv("CONTRACT_SCANNER_BUDGET", "0")
    monkeypatch.delenv("CONTRACT_SCANNER_MAX_INPUT_SIZE", raising=False)
    options = main.resolve_options()
    assert options.evaluation_budget == 0
    assert options.max_input_size is None
    assert main.resolve_options(budget=7).evaluation_budget == 7

    monkeypatch.setenv("CONTRACT_SCANNER_MAX_INPUT_SIZE", "lots")
    with pytest.raises(SystemExit):
        main.resolve_options()


def test_cli_list_rules(capsys):
    main.main(["--list-rules"])
    assert "reentrancy" in capsys.readouterr().out
