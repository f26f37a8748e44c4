"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from deskstack.adapters.mock import MockAdapter
from deskstack.adapters.registry import AdapterRegistry
from deskstack.core import context
from deskstack.core.config.stack_loader import bundled_registry
from deskstack.core.models.action import Receipt
from deskstack.core.models.environment import EnvironmentFacts, GpuVendor


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(autouse=True)
def tmp_state_dir(tmp_path: Path):
    """Every test gets its own state directory."""
    state_dir = tmp_path / "state"
    context.set_state_dir(state_dir)
    yield state_dir
    context.set_state_dir(None)


@pytest.fixture
def registry():
    """The bundled stack registry."""
    return bundled_registry()


@pytest.fixture
def uefi_amd() -> EnvironmentFacts:
    return EnvironmentFacts(
        gpu_vendors=frozenset({GpuVendor.AMD}),
        firmware_is_uefi=True,
        esp_mounted=True,
    )


@pytest.fixture
def legacy_bios() -> EnvironmentFacts:
    return EnvironmentFacts(firmware_is_uefi=False)


@pytest.fixture
def mock() -> MockAdapter:
    """A mock that knows the shell version, has GSConnect installed and
    returns empty extension lists."""
    m = MockAdapter()
    m.set_operation_response(
        "shell-version",
        Receipt.success("gnome-extensions", "x", output="GNOME Shell 46.0", metadata={"major": "46"}),
    )
    m.set_operation_response(
        "get-array",
        Receipt.success("gsettings", "x", output="@as []", metadata={"values": []}),
    )
    m.set_operation_response(
        "list",
        Receipt.success("gnome-extensions", "x", metadata={"uuids": ["gsconnect@andyholmes.github.io"]}),
    )
    return m


@pytest.fixture
def mock_registry(mock: MockAdapter) -> AdapterRegistry:
    reg = AdapterRegistry()
    reg.set_mock_mode(True, mock)
    return reg


def ego_info(ext_id: int, uuid: str) -> Receipt:
    """A successful extension-info lookup for *ext_id*."""
    return Receipt.success(
        "http",
        f"extensions_stage:info:{ext_id}",
        metadata={"data": {
            "uuid": uuid,
            "name": uuid.split("@")[0],
            "download_url": f"/download-extension/{uuid}.shell-extension.zip?version_tag=1",
            "version": 7,
        }},
    )
