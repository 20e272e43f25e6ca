"""
Smoke tests for the operator scripts under scripts/.
"""

from governance_config import GovernanceSettings, load_catalogue
from scripts.run_sweeps import run
from scripts.validate_catalogue import main as validate_main
from tests.conftest import TENANT


class TestValidateCatalogue:
    def test_default_catalogue_is_valid(self, capsys):
        assert validate_main([]) == 0
        out = capsys.readouterr().out
        assert "PUBLISH_NAV" in out
        assert "template-nav-monthly" in out
        assert f"Checksum: {load_catalogue().checksum}" in out
        assert out.rstrip().endswith("Catalogue is valid.")

    def test_missing_directory(self, tmp_path, capsys):
        assert validate_main(["--catalogue-dir", str(tmp_path / "nope")]) == 1
        assert "directory not found" in capsys.readouterr().err

    def test_broken_yaml(self, tmp_path, capsys):
        (tmp_path / "approval_policies.yaml").write_text("policies: [\n")
        (tmp_path / "playbook_templates.yaml").write_text("templates: []\n")
        assert validate_main(["--catalogue-dir", str(tmp_path)]) == 1
        assert "VALIDATION FAILED" in capsys.readouterr().err


class TestRunSweeps:
    def test_empty_database(self, capsys):
        settings = GovernanceSettings(database_url="sqlite://")
        assert run(TENANT, settings, expire=True) == 0
        out = capsys.readouterr().out
        assert "Escalation sweep: scanned=0 escalated=0 skipped=0" in out
        assert "Deadline sweep: scanned=0 reminders=0 escalated=0" in out
        assert "Expired requests: 0" in out
