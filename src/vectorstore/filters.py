"""
Condition tree to SQL compiler.

Translates a ConditionGroup into WHERE predicates plus the LEFT JOINs
needed for multi-valued fields. The compiler is a pure function of
(tree, schema, collection, escaper): it never touches the database and
never raises for bad leaves. Unknown fields, unsupported operators and
unrenderable values are dropped and reported as RecoverableWarning.

Multi-valued fields live in side tables named ``<collection>__<field>``
holding one row per value. They are joined through a per-row aggregate,
so predicates compare arrays and the join never multiplies result rows:

    =       contains all values    value @> ARRAY[...]
    !=      does not contain all   NOT COALESCE(value @> ARRAY[...], FALSE)
    IN      contains any value     value && ARRAY[...]
    NOT IN  contains none          NOT COALESCE(value && ARRAY[...], FALSE)
"""

from src.vectorstore.escaping import SqlEscaper
from src.vectorstore.exceptions import EscapeStringError
from src.vectorstore.schemas import (
    NATIVE_FIELDS,
    STRING_FIELD_TYPES,
    CompiledFilter,
    Condition,
    ConditionGroup,
    FieldInfo,
    IndexSchema,
    RecoverableWarning,
    column_type,
)

OPERATION = "prepare_filters"

SINGLE_VALUE_OPERATORS: frozenset[str] = frozenset({
    "=", "<>", "!=", "<", "<=", ">", ">=",
    "IN", "NOT IN", "LIKE", "NOT LIKE", "BETWEEN", "NOT BETWEEN",
})

# Operators that compare against exactly one value
_COMPARISON_OPERATORS: frozenset[str] = frozenset({
    "<", "<=", ">", ">=", "LIKE", "NOT LIKE",
})

MULTI_VALUE_OPERATORS: dict[str, str] = {
    "=": "{column} @> {values}",
    "!=": "NOT COALESCE({column} @> {values}, FALSE)",
    "<>": "NOT COALESCE({column} @> {values}, FALSE)",
    "IN": "{column} && {values}",
    "NOT IN": "NOT COALESCE({column} && {values}, FALSE)",
}


def side_table_name(collection: str, field_identifier: str) -> str:
    """Name of the side table holding a multi-valued field's values."""
    return f"{collection}__{field_identifier}"


def resolve_field(schema: IndexSchema, field_name: str) -> FieldInfo | None:
    """
    Look up a condition's field.

    Declared index fields win; reserved native fields fall back to a
    single-valued string. Anything else is unknown.
    """
    field_info = schema.get_field(field_name)
    if field_info is not None:
        return field_info
    if field_name in NATIVE_FIELDS:
        return FieldInfo(identifier=field_name, type="string", is_multiple=False)
    return None


def compile_condition_group(
    group: ConditionGroup,
    schema: IndexSchema,
    collection: str,
    escaper: SqlEscaper,
) -> CompiledFilter:
    """
    Compile a condition group into predicates and joins.

    Each child contributes at most one predicate. Nested groups with more
    than one predicate are parenthesized and joined by their own
    conjunction; the top-level predicates are joined by this group's
    conjunction when rendered.

    Args:
        group: Root of the condition tree
        schema: Index metadata used to type each field
        collection: Collection the filter applies to
        escaper: Connection-aware escaper

    Returns:
        CompiledFilter with predicates, deduplicated joins and warnings
    """
    compiled = CompiledFilter(conjunction=group.conjunction)

    for condition in group.conditions:
        if isinstance(condition, ConditionGroup):
            child = compile_condition_group(condition, schema, collection, escaper)
            compiled.warnings.extend(child.warnings)
            _merge_joins(compiled.joins, child.joins)
            if len(child.where) == 1:
                compiled.where.append(child.where[0])
            elif child.where:
                compiled.where.append(
                    "(" + f" {child.conjunction} ".join(child.where) + ")"
                )
            continue

        predicate, join, warning = compile_condition(
            condition, schema, collection, escaper
        )
        if warning is not None:
            compiled.warnings.append(warning)
        if predicate is None:
            continue
        compiled.where.append(predicate)
        if join is not None:
            _merge_joins(compiled.joins, [join])

    return compiled


def compile_condition(
    condition: Condition,
    schema: IndexSchema,
    collection: str,
    escaper: SqlEscaper,
) -> tuple[str | None, str | None, RecoverableWarning | None]:
    """
    Compile one leaf.

    Returns:
        (predicate, join, warning). predicate is None when the leaf was
        dropped, in which case warning says why.
    """
    field_info = resolve_field(schema, condition.field)
    if field_info is None:
        return None, None, _warning(
            f"Field {condition.field} is not indexed on the {schema.id} index "
            f"so cannot be filtered on."
        )

    values = condition.values
    if not values:
        return None, None, _warning(
            f"Condition on field {condition.field} has no values and was skipped."
        )

    operator = " ".join(str(condition.operator).upper().split())

    try:
        if field_info.is_multiple:
            return _compile_multiple(
                field_info, operator, values, collection, escaper
            )
        return _compile_single(field_info, operator, values, collection, escaper)
    except EscapeStringError as e:
        return None, None, _warning(
            f"Condition on field {condition.field} could not be rendered: {e}"
        )


def prepare_filters(
    group: ConditionGroup,
    schema: IndexSchema,
    collection: str,
    escaper: SqlEscaper,
) -> str:
    """Compile and render a condition tree as a FROM-clause suffix."""
    return compile_condition_group(group, schema, collection, escaper).render()


def _compile_single(
    field_info: FieldInfo,
    operator: str,
    values: list,
    collection: str,
    escaper: SqlEscaper,
) -> tuple[str | None, str | None, RecoverableWarning | None]:
    if operator not in SINGLE_VALUE_OPERATORS:
        return None, None, _warning(
            f"Operator {operator} is not supported by this Postgres integration."
        )

    if operator == "!=":
        operator = "<>"
    if len(values) > 1 and operator == "=":
        operator = "IN"
    elif len(values) > 1 and operator == "<>":
        operator = "NOT IN"

    column = (
        f"{escaper.escape_identifier(collection)}."
        f"{escaper.escape_identifier(field_info.identifier)}"
    )

    if operator in ("BETWEEN", "NOT BETWEEN"):
        if len(values) != 2:
            return None, None, _warning(
                f"Operator {operator} on field {field_info.identifier} needs exactly two values."
            )
        low = _render_values(field_info, [values[0]], escaper)
        high = _render_values(field_info, [values[1]], escaper)
        return f"({column} {operator} {low} AND {high})", None, None

    if operator in _COMPARISON_OPERATORS and len(values) != 1:
        return None, None, _warning(
            f"Operator {operator} on field {field_info.identifier} needs a single value."
        )

    rendered = _render_values(field_info, values, escaper)
    return f"({column} {operator} {rendered})", None, None


def _compile_multiple(
    field_info: FieldInfo,
    operator: str,
    values: list,
    collection: str,
    escaper: SqlEscaper,
) -> tuple[str | None, str | None, RecoverableWarning | None]:
    template = MULTI_VALUE_OPERATORS.get(operator)
    if template is None:
        return None, None, _warning(
            f"Operator {operator} is not supported by this Postgres integration "
            f"on multiple fields."
        )

    side_table = escaper.escape_identifier(
        side_table_name(collection, field_info.identifier)
    )
    escaped_collection = escaper.escape_identifier(collection)
    join = (
        f"LEFT JOIN (SELECT chunk_id, array_agg(value) AS value FROM {side_table} "
        f"GROUP BY chunk_id) AS {side_table} "
        f"ON {escaped_collection}.id = {side_table}.chunk_id"
    )

    array = _render_values(field_info, values, escaper, constructor=True)
    cast = column_type(field_info.type, values[0]).lower()
    predicate = template.format(
        column=f"{side_table}.value",
        values=f"{array}::{cast}[]",
    )
    return f"({predicate})", join, None


def _render_values(
    field_info: FieldInfo,
    values: list,
    escaper: SqlEscaper,
    constructor: bool = False,
) -> str:
    if field_info.type in STRING_FIELD_TYPES:
        return escaper.prepare_string_array(values, constructor=constructor)
    return escaper.prepare_scalar_array(values, constructor=constructor)


def _merge_joins(joins: list[str], new_joins: list[str]) -> None:
    for join in new_joins:
        if join not in joins:
            joins.append(join)


def _warning(message: str) -> RecoverableWarning:
    return RecoverableWarning(operation=OPERATION, message=message)
