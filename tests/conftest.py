"""Shared pytest fixtures and utilities for Taminot tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from taminot import cli, constants, core_logic, data_manager  # noqa: E402
from taminot.setup_workbook import build_master_workbook, create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
ADMIN_LOGIN = "admin"
ADMIN_PASSWORD = "secret"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "AdminLogin = {admin_login}\n"
    "AdminPassword = {admin_password}\n\n"
    "[Network]\n"
    "RequestTimeout = 5\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "taminot.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(
            workbook_path,
            admin_login=ADMIN_LOGIN,
            admin_password=ADMIN_PASSWORD,
            overwrite=True,
        )
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                schema_version=schema_version,
                admin_login=ADMIN_LOGIN,
                admin_password=ADMIN_PASSWORD,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# In-memory fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory contexts."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "taminot.xlsx",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        admin_login=ADMIN_LOGIN,
        admin_password=ADMIN_PASSWORD,
        request_timeout=5.0,
    )


@pytest.fixture
def context_factory(settings: data_manager.ConfigSettings) -> Callable[[], core_logic.RuntimeContext]:
    """Factory for runtime contexts over fresh in-memory workbooks."""

    def _create_context() -> core_logic.RuntimeContext:
        workbook = build_master_workbook(admin_login=ADMIN_LOGIN, admin_password=ADMIN_PASSWORD)
        return core_logic.RuntimeContext(settings=settings, workbook=workbook)

    return _create_context


@pytest.fixture
def context(context_factory: Callable[[], core_logic.RuntimeContext]) -> core_logic.RuntimeContext:
    """Runtime context over a fresh workbook that is never written to disk."""

    return context_factory()


@pytest.fixture
def hospital(context: core_logic.RuntimeContext) -> data_manager.UserRow:
    """An organization account registered in ``context``."""

    return core_logic.add_user(context, name="City Hospital", username="city", password="pw")


@pytest.fixture
def plasma(context: core_logic.RuntimeContext) -> data_manager.ProductRow:
    """A product with two variants registered in ``context``."""

    return core_logic.add_product(context, product_name="Plasma", unit="dose", variants="250 ml, 450 ml")


@pytest.fixture
def gloves(context: core_logic.RuntimeContext) -> data_manager.ProductRow:
    """A product without variants registered in ``context``."""

    return core_logic.add_product(context, product_name="Gloves", unit="box")


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="taminot-cli", description="Taminot CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
