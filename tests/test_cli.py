"""Tests for the command-line interface."""

import asyncio
import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from arrears_reconciler.database import (
    ArrearsRecordRepository,
    Base,
    Profile,
    Property,
    RentSchedule,
    RentScheduleRepository,
    Tenancy,
    TenancyTenant,
    create_async_engine,
    get_async_session_factory,
    session_scope,
)
from arrears_reconciler.reconciliation.cli import (
    EXIT_PARTIAL_FAILURE,
    EXIT_USAGE_ERROR,
    create_parser,
    main,
)

# Runs are always as of the current UTC date
AS_OF = datetime.now(timezone.utc).date()


async def _seed(database_url, tenancies):
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_scope(get_async_session_factory(engine)) as session:
        for address, days_ago, amount in tenancies:
            owner = Profile(full_name="Olive Owner", role="owner")
            tenant = Profile(full_name="Alex Tenant", role="tenant")
            session.add_all([owner, tenant])
            await session.flush()
            prop = Property(owner_id=owner.id, address_line_1=address)
            session.add(prop)
            await session.flush()
            tenancy = Tenancy(property_id=prop.id, status="active")
            session.add(tenancy)
            await session.flush()
            session.add(TenancyTenant(tenancy_id=tenancy.id, tenant_id=tenant.id, is_primary=True))
            session.add(RentSchedule(
                tenancy_id=tenancy.id,
                due_date=AS_OF - timedelta(days=days_ago),
                amount=amount,
            ))
    await engine.dispose()


@pytest.fixture
def database_url(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'arrears.db'}"
    asyncio.run(_seed(url, [("1 First St", 5, 35000), ("2 Second St", 30, 120000)]))
    return url


class TestParser:
    """Tests for the argument parser."""

    def test_process_defaults(self):
        args = create_parser().parse_args(["process"])

        assert args.command == "process"
        assert args.format == "json"
        assert args.output is None

    def test_rejects_unknown_format(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["process", "--format", "xml"])

    def test_rejects_backdated_run_date(self):
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(["process", "--as-of", "2024-01-01"])
        assert exc_info.value.code == 2


class TestMain:
    """Tests for main()."""

    def test_no_command_is_usage_error(self, capsys):
        assert main([]) == EXIT_USAGE_ERROR
        assert EXIT_USAGE_ERROR != EXIT_PARTIAL_FAILURE
        assert "process" in capsys.readouterr().out

    def test_process_writes_json_report(self, database_url, tmp_path):
        output = tmp_path / "report.json"

        exit_code = main([
            "process",
            "--database-url", database_url,
            "--output", str(output),
        ])

        assert exit_code == 0
        data = json.loads(output.read_text())
        assert data["processed"] == 2
        assert data["created"] == 2
        assert data["status"] == "completed"
        assert data["asOf"] == AS_OF.isoformat()
        assert sorted(r["totalOverdue"] for r in data["results"]) == [350.0, 1200.0]

    def test_process_csv_to_stdout(self, database_url, capsys):
        exit_code = main([
            "process",
            "--database-url", database_url,
            "--format", "csv",
        ])

        assert exit_code == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[0] == "tenancy_id,tenant_id,action,total_overdue,days_overdue,error"
        assert len(lines) == 3
        assert all(",created," in line for line in lines[1:])

    def test_second_run_updates(self, database_url, capsys):
        args = ["process", "--database-url", database_url, "--format", "text"]

        assert main(args) == 0
        capsys.readouterr()
        assert main(args) == 0

        out = capsys.readouterr().out
        assert "ARREARS RUN SUMMARY" in out
        assert "Updated: 2" in out

    def test_partial_failure_exit_code(self, database_url, capsys):
        with patch.object(
            ArrearsRecordRepository, "create", side_effect=RuntimeError("constraint violated")
        ):
            exit_code = main([
                "process",
                    "--database-url", database_url,
                "--format", "detailed_text",
            ])

        assert exit_code == 1
        assert "constraint violated" in capsys.readouterr().out

    def test_run_failure_exit_code(self, database_url):
        with patch.object(
            RentScheduleRepository, "list_overdue", side_effect=SQLAlchemyError("connection refused")
        ):
            exit_code = main([
                "process",
                    "--database-url", database_url,
            ])

        assert exit_code == 2
