from __future__ import annotations

from pathlib import Path

import pytest

from lockerlease.core.entities.locker import LockerState
from lockerlease.core.use_cases.provision_lockers import ProvisionLockersUseCase
from lockerlease.infrastructure.config import settings
from lockerlease.infrastructure.provisioning import load_locker_ids
from lockerlease.infrastructure.repositories.locker_repository_impl import LockerRepositoryImpl
from lockerlease.services.locker_service import provision_lockers_service


def test_default_provisioning_file_lists_five_lockers() -> None:
    assert load_locker_ids(settings.provisioning_path) == [
        "LOCKER_001",
        "LOCKER_002",
        "LOCKER_003",
        "LOCKER_004",
        "LOCKER_005",
    ]


@pytest.mark.parametrize(
    "content",
    [
        "lockers: LOCKER_001\n",
        "- LOCKER_001\n",
        "lockers:\n  - 'A:B'\n",
        "lockers:\n  - LOCKER_001\n  - LOCKER_001\n",
        "lockers:\n  - ''\n",
    ],
)
def test_invalid_provisioning_file_is_rejected(tmp_path: Path, content: str) -> None:
    path = tmp_path / "lockers.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError):
        load_locker_ids(path)


def test_provisioning_is_idempotent_and_keeps_existing_state(db, manager) -> None:
    use_case = ProvisionLockersUseCase(locker_repo=LockerRepositoryImpl(db))

    first = use_case.execute(["L1", "L2"])
    manager.allocate_next()
    second = use_case.execute(["L1", "L2", "L3"])

    assert first.created == ("L1", "L2")
    assert second.created == ("L3",)
    assert second.existing == ("L1", "L2")
    assert manager.get_locker("L1").state is LockerState.LEASED


def test_provision_service_reads_configured_file(db) -> None:
    result = provision_lockers_service(db)

    assert result["created"] == result["locker_ids"]
    assert provision_lockers_service(db)["created"] == []
