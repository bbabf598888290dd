import json

from typer.testing import CliRunner

from sipodi.cli.app import app
from sipodi.core.talents import TalentService
from sipodi.db.session import SessionLocal

runner = CliRunner()


def _submit(actor) -> str:
    with SessionLocal() as db:
        talent = TalentService(db).create(
            actor,
            talent_type="minat_bakat",
            detail={"interest_name": "Tari", "description": "Tari tradisional"},
        )
    return talent.id


def test_init_is_idempotent() -> None:
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"ok": True, "seeded_admins": 0}


def test_init_reset_recreates_schema_and_admin() -> None:
    runner.invoke(app, ["school", "create", "--name", "SD Negeri 9", "--npsn", "20000009"])
    result = runner.invoke(app, ["--log-level", "warning", "init", "--reset"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"ok": True, "seeded_admins": 1}

    result = runner.invoke(app, ["school", "list"])
    assert json.loads(result.stdout) == []


def test_school_and_user_commands() -> None:
    result = runner.invoke(app, ["school", "create", "--name", "SD Negeri 5", "--npsn", "20000005"])
    assert result.exit_code == 0, result.output
    school = json.loads(result.stdout)
    assert school["name"] == "SD Negeri 5"

    result = runner.invoke(
        app,
        [
            "user", "create",
            "--email", "kepsek@sekolah.id",
            "--password", "rahasia123",
            "--role", "gtk",
            "--full-name", "Kepala Sekolah",
            "--school-id", school["id"],
            "--gtk-type", "kepala_sekolah",
        ],
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["gtk_type"] == "kepala_sekolah"

    result = runner.invoke(app, ["user", "list", "--school-id", school["id"]])
    assert [user["email"] for user in json.loads(result.stdout)] == ["kepsek@sekolah.id"]

    result = runner.invoke(app, ["school", "list", "--search", "sd negeri"])
    assert [item["npsn"] for item in json.loads(result.stdout)] == ["20000005"]


def test_service_errors_exit_non_zero() -> None:
    runner.invoke(app, ["school", "create", "--name", "SD Negeri 5", "--npsn", "20000005"])
    result = runner.invoke(app, ["school", "create", "--name", "SD Lain", "--npsn", "20000005"])
    assert result.exit_code == 1
    assert "VALIDATION_ERROR" in result.output


def test_talent_review_commands(accounts) -> None:
    first = _submit(accounts["gtk_a"])
    second = _submit(accounts["gtk_a2"])

    result = runner.invoke(app, ["talent", "list"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["meta"]["total_count"] == 2

    result = runner.invoke(app, ["talent", "approve", first, "missing", "--reviewer", "admin.a@sekolah.id"])
    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert body["succeeded"] == 1
    assert body["failed_ids"][0]["id"] == "missing"

    result = runner.invoke(
        app,
        ["talent", "reject", second, "--reason", "Tidak relevan", "--reviewer", "admin.b@sekolah.id"],
    )
    assert json.loads(result.stdout)["failed_count"] == 1

    result = runner.invoke(app, ["talent", "list", "--status", "approved"])
    assert [item["id"] for item in json.loads(result.stdout)["data"]] == [first]


def test_unknown_reviewer_is_a_usage_error() -> None:
    result = runner.invoke(app, ["talent", "approve", "some-id", "--reviewer", "nobody@sekolah.id"])
    assert result.exit_code == 2


def test_uploads_expire_without_stale_rows() -> None:
    result = runner.invoke(app, ["uploads", "expire"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"expired": 0}
