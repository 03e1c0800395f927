# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Tests for the cron trigger endpoint."""
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from postforge.server.config import ServerConfig
from postforge.server.database.schedule_repository import ScheduleRepository
from postforge.server.dependencies import get_config
from postforge.server.models.schedule import Schedule


AUTH = {"Authorization": "Bearer s3cret"}
LONG_AGO = datetime(2020, 1, 1, tzinfo=UTC)


class TestAuthentication:
    """Bearer secret checks."""

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "s3cret"}],
        ids=["missing", "wrong", "no-scheme"],
    )
    async def test_rejected(
        self, client: AsyncClient, mock_engine: MagicMock, headers: dict[str, str]
    ) -> None:
        response = await client.post("/api/cron", headers=headers)

        assert response.status_code == 401
        mock_engine.launch.assert_not_called()

    async def test_rejected_when_no_secret_configured(
        self, app: FastAPI, client: AsyncClient, tmp_path: Path
    ) -> None:
        app.dependency_overrides[get_config] = lambda: ServerConfig(
            database_path=tmp_path / "unused.db", cron_secret=None
        )

        response = await client.get("/api/cron", headers={"Authorization": "Bearer "})

        assert response.status_code == 401


class TestTrigger:
    """Processing due schedules."""

    async def test_nothing_due(self, client: AsyncClient) -> None:
        response = await client.get("/api/cron", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"processed": 0, "successful": 0, "failed": 0, "results": []}

    async def test_processes_due_schedules(
        self,
        client: AsyncClient,
        schedule_repository: ScheduleRepository,
        make_schedule: Callable[..., Schedule],
        mock_engine: MagicMock,
    ) -> None:
        ok = await schedule_repository.create(make_schedule(name="Ok"), now=LONG_AGO)
        empty = await schedule_repository.create(
            make_schedule(name="Empty", topic_list=[]), now=LONG_AGO
        )

        response = await client.post("/api/cron", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert (data["processed"], data["successful"], data["failed"]) == (2, 1, 1)
        by_id = {result["schedule_id"]: result for result in data["results"]}
        assert by_id[ok.id]["topic"] == "A"
        assert by_id[empty.id]["error"] == "No topic available"
        mock_engine.launch.assert_called_once()

        rotated = await schedule_repository.get(ok.id)
        assert rotated is not None
        assert rotated.topic_index == 1
