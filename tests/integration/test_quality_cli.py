"""
Tests for the quality check command line entry point
"""

from argparse import Namespace
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from models import Measurement
from models.base import MeasurementStatus
from scripts.run_quality_checks import build_parser, main, run_checks


def test_no_option_exits_with_error():
    assert main([]) == 1


def test_parser_flags():
    args = build_parser().parse_args(["--flag-suspicious", "--auto-approve"])
    assert args.flag_suspicious is True
    assert args.auto_approve is True


def test_main_runs_checks():
    with patch("scripts.run_quality_checks.run_checks", new_callable=AsyncMock) as mock_run:
        assert main(["--auto-approve"], session_maker=object()) == 0

    args = mock_run.await_args.args[0]
    assert args.auto_approve is True
    assert args.flag_suspicious is False


@pytest.mark.asyncio
async def test_run_checks_flags_then_approves(session_maker, create_user, create_metric, create_measurement):
    user = await create_user()
    metric = await create_metric()
    coarse = await create_measurement(user, metric, accuracy=Decimal("80"))
    precise = await create_measurement(user, metric, accuracy=Decimal("3"))

    summary = await run_checks(Namespace(flag_suspicious=True, auto_approve=True), session_maker)

    assert summary.flagged == 1
    assert summary.approved == 1
    async with session_maker() as session:
        assert (await session.get(Measurement, coarse.id)).status == MeasurementStatus.PENDING
        assert (await session.get(Measurement, precise.id)).status == MeasurementStatus.APPROVED
