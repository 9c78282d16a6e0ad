import logging
from typing import Any

from sqlalchemy.engine import Dialect
from sqlalchemy.exc import CompileError

logger = logging.getLogger(__name__)


def render_sql(statement: Any, dialect: Dialect | None = None) -> str:
    """
    Render a statement as SQL text for error messages and logs.

    Literal values are inlined when every bound type has a literal renderer.
    Otherwise the statement is rendered with placeholders and the bound
    parameters are appended, e.g. `DELETE FROM items WHERE items.id = ? {'id_1': ...}`.
    """
    try:
        return str(statement.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))
    except (CompileError, NotImplementedError) as exc:
        logger.debug("render_sql.literal_binds_unavailable", extra={"reason": str(exc)})

    compiled = statement.compile(dialect=dialect)
    params = compiled.params
    if params:
        return f"{compiled} {params!r}"
    return str(compiled)
