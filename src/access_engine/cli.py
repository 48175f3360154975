"""Command-line entry point for inspecting roles and checking permissions."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import NoReturn

import typer
from sqlalchemy.exc import SQLAlchemyError

from access_engine.common.logging import setup_logging
from access_engine.engine import PermissionEngine
from access_engine.errors import AccessEngineError
from access_engine.hierarchy import RoleHierarchy
from access_engine.projection import VirtualEntityProjector
from access_engine.rbac.config import AccessConfig, get_access_config, load_access_config
from access_engine.rbac.types import Actor, Target
from access_engine.settings import get_settings
from access_engine.store.db import build_engine, build_sessionmaker, create_schema, session_scope
from access_engine.store.memory import InMemoryIdentityStore
from access_engine.store.sql import SqlIdentityStore

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Inspect the role hierarchy and resolve permissions against a fixture or database.",
)


def _fail(message: str) -> NoReturn:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=1)


def _config(path: Path | None = None) -> AccessConfig:
    try:
        if path is not None:
            return load_access_config(path)
        return get_access_config()
    except AccessEngineError as exc:
        _fail(str(exc))


@contextmanager
def _open_store(
    fixture: Path | None, config: AccessConfig
) -> Iterator[InMemoryIdentityStore | SqlIdentityStore]:
    """A fixture-backed store, or the SQL store at ACCESS_DATABASE_URL when no fixture is given."""

    if fixture is not None:
        try:
            store = InMemoryIdentityStore.from_file(fixture, config=config)
        except AccessEngineError as exc:
            _fail(str(exc))
        yield store
        return

    try:
        engine = build_engine(get_settings())
    except AccessEngineError as exc:
        _fail(str(exc))
    try:
        with session_scope(build_sessionmaker(engine)) as session:
            yield SqlIdentityStore(session, config=config)
    finally:
        engine.dispose()


@app.callback()
def main() -> None:
    setup_logging(get_settings())


@app.command(name="roles", help="List roles from most to least senior.")
def roles(
    config_file: Path | None = typer.Option(None, "--config", help="JSON role/entity table."),
) -> None:
    hierarchy = RoleHierarchy(_config(config_file))
    for role in hierarchy.all_roles():
        parent = role.default_parent or "-"
        marker = " (bypass)" if hierarchy.is_bypass_role(role.role_id) else ""
        typer.echo(f"{role.level:>3}  {role.role_id:<22} parent={parent}{marker}")


@app.command(name="entities", help="List virtual entities and their role bands.")
def entities(
    config_file: Path | None = typer.Option(None, "--config", help="JSON role/entity table."),
) -> None:
    config = _config(config_file)
    for entity in config.virtual_entities.values():
        members = ",".join(sorted(entity.role_types))
        typer.echo(
            f"{entity.name}  levels={entity.min_level}-{entity.max_level}  roles={members}"
        )


@app.command(name="assignable", help="Roles an actor holding ROLES may assign.")
def assignable(
    held: list[str] = typer.Argument(..., help="Role identifiers held by the actor."),
) -> None:
    hierarchy = RoleHierarchy(_config())
    grantable = hierarchy.assignable_roles(role.upper() for role in held)
    if not grantable:
        typer.echo("(none)")
        return
    for role in hierarchy.all_roles():
        if role.role_id in grantable:
            typer.echo(role.role_id)


@app.command(name="distance", help="Hierarchical distance between two roles.")
def distance(
    role_a: str = typer.Argument(..., help="First role."),
    role_b: str = typer.Argument(..., help="Second role."),
) -> None:
    hierarchy = RoleHierarchy(_config())
    try:
        value = hierarchy.hierarchical_distance(role_a.upper(), role_b.upper())
    except AccessEngineError as exc:
        _fail(str(exc))
    typer.echo(str(value))


@app.command(name="validate", help="Load and validate a role/entity table.")
def validate(
    config_file: Path | None = typer.Option(None, "--config", help="JSON role/entity table."),
) -> None:
    config = _config(config_file)
    typer.echo(
        f"ok: version={config.version} roles={len(config.roles)} "
        f"entities={len(config.virtual_entities)} permissions={len(config.permissions)}"
    )


@app.command(name="init-db", help="Create the identity store tables at ACCESS_DATABASE_URL.")
def init_db() -> None:
    try:
        engine = build_engine(get_settings())
    except AccessEngineError as exc:
        _fail(str(exc))
    try:
        tables = create_schema(engine)
    except SQLAlchemyError as exc:
        _fail(f"cannot create tables: {exc}")
    finally:
        engine.dispose()
    typer.echo(f"ok: {', '.join(tables)}")


@app.command(name="members", help="Project a virtual entity over the identity store.")
def members(
    entity: str = typer.Argument(..., help="Virtual entity name, e.g. EMPLOYEES."),
    tenant: str = typer.Option(..., "--tenant", help="Tenant identifier."),
    company: str | None = typer.Option(None, "--company", help="Restrict to one company."),
    fixture: Path | None = typer.Option(
        None, "--fixture", help="JSON store fixture; defaults to ACCESS_DATABASE_URL."
    ),
) -> None:
    config = _config()
    with _open_store(fixture, config) as store:
        projector = VirtualEntityProjector(config, store)
        try:
            found = list(
                projector.project(entity, tenant, company, order_by=lambda person: person.id)
            )
        except AccessEngineError as exc:
            _fail(str(exc))
    for person in found:
        typer.echo(f"{person.id}  roles={','.join(sorted(person.role_types))}")
    typer.echo(f"{len(found)} member(s)", err=True)


@app.command(name="check", help="Resolve a permission for an actor.")
def check(
    resource: str = typer.Argument(..., help="Resource or virtual entity, e.g. EMPLOYEES."),
    action: str = typer.Argument(..., help="VIEW, CREATE, EDIT, DELETE, or a custom action."),
    actor_id: str = typer.Option(..., "--actor", help="Acting person id."),
    tenant: str = typer.Option(..., "--tenant", help="Tenant identifier."),
    company: str | None = typer.Option(None, "--company", help="Target company."),
    site: str | None = typer.Option(None, "--site", help="Target site."),
    person: str | None = typer.Option(None, "--person", help="Target person."),
    fields: list[str] | None = typer.Option(None, "--field", help="Requested field (repeatable)."),
    fixture: Path | None = typer.Option(
        None, "--fixture", help="JSON store fixture; defaults to ACCESS_DATABASE_URL."
    ),
) -> None:
    config = _config()
    target = Target(
        company_id=company,
        site_id=site,
        person_id=person,
        requested_fields=tuple(fields) if fields else None,
    )
    with _open_store(fixture, config) as store:
        record = store.get_person(actor_id)
        actor = Actor(
            person_id=actor_id,
            tenant_id=tenant,
            company_id=record.company_id if record else None,
        )
        engine = PermissionEngine.from_settings(store, config=config)
        try:
            decision = engine.check_permission(actor, resource, action, target)
        except AccessEngineError as exc:
            _fail(str(exc))

    if decision.allowed:
        scope = decision.scope.value if decision.scope else "-"
        typer.echo(
            f"ALLOW scope={scope} fields={','.join(decision.allowed_fields)} "
            f"via={decision.code.value} reason={decision.reason}"
        )
        return
    typer.echo(f"DENY code={decision.code.value} reason={decision.reason}")
    raise typer.Exit(code=1)


__all__ = ["app", "main"]
