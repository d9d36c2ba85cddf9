from __future__ import annotations

from compliance_import.models.record_spec import FieldKind, FieldRole, FieldSpec, RecordSpec

"""Static field specifications for the importable record kinds.

Aliases cover the Czech template headers (with and without diacritics) and
the English spellings; matching is case/diacritic-insensitive, see
compliance_import.mapping.column_mapper.normalize_header.
"""

__all__ = [
    "STATUS_VALUES",
    "WORK_CATEGORIES",
    "TRAINING_SPEC",
    "DEADLINE_SPEC",
    "MEDICAL_SPEC",
    "RECORD_SPECS",
    "get_record_spec",
]

STATUS_VALUES = ("valid", "warning", "expired")
WORK_CATEGORIES = ("1", "2", "3", "4")

# Fields shared by all kinds (period override, reminder, status, free text)
_PERIOD = FieldSpec(
    "period_days", FieldKind.INTEGER,
    aliases=("perioda_dny", "perioda", "period", "periodicita"),
    role=FieldRole.PERIOD,
)
_REMIND = FieldSpec(
    "remind_days_before", FieldKind.INTEGER,
    aliases=("pripomenout_dni", "pripomenout dni predem", "remind days"),
)
_STATUS = FieldSpec(
    "status", FieldKind.ENUM,
    aliases=("stav",),
    allowed=STATUS_VALUES,
    role=FieldRole.STATUS,
)
_FACILITY = FieldSpec(
    "facility", FieldKind.STRING, required=True,
    aliases=("facility_code", "provozovna", "site"),
    role=FieldRole.FACILITY,
)
_COMPANY = FieldSpec("company", FieldKind.STRING, aliases=("firma",))
_NOTE = FieldSpec("note", FieldKind.STRING, aliases=("poznamka", "notes"))
_EMPLOYEE = FieldSpec(
    "employee_number", FieldKind.STRING, required=True,
    aliases=("osobni_cislo", "osobni cislo", "employee number", "employee no", "personal number"),
    role=FieldRole.SUBJECT,
)

TRAINING_SPEC = RecordSpec(
    kind="training",
    table="trainings",
    fields=(
        _EMPLOYEE,
        FieldSpec(
            "training_type_name", FieldKind.STRING, required=True,
            aliases=("typ_skoleni", "typ skoleni", "training type", "training"),
            role=FieldRole.RECORD_TYPE,
        ),
        _FACILITY,
        FieldSpec(
            "last_training_date", FieldKind.DATE, required=True,
            aliases=("datum_posledniho_skoleni", "datum posledniho skoleni", "last training date", "training date"),
            role=FieldRole.OCCURRENCE_DATE,
        ),
        _PERIOD,
        _REMIND,
        _STATUS,
        FieldSpec(
            "work_category", FieldKind.ENUM,
            aliases=("kategorie", "kategorie prace", "risk category"),
            allowed=WORK_CATEGORIES,
        ),
        FieldSpec("trainer", FieldKind.STRING, aliases=("skolitel",)),
        _COMPANY,
        _NOTE,
    ),
    subject_table="employees",
    subject_key_column="employee_number",
    subject_column="employee_id",
    type_table="training_types",
    type_column="training_type_id",
    date_column="last_training_date",
    next_date_column="next_training_date",
)

DEADLINE_SPEC = RecordSpec(
    kind="deadline",
    table="deadlines",
    fields=(
        FieldSpec(
            "inventory_number", FieldKind.STRING, required=True,
            aliases=("inventarni_cislo", "inventarni cislo", "inventory number", "inventory no"),
            role=FieldRole.SUBJECT,
        ),
        FieldSpec(
            "deadline_type_name", FieldKind.STRING, required=True,
            aliases=("typ_lhuty", "typ lhuty", "deadline type", "check type"),
            role=FieldRole.RECORD_TYPE,
        ),
        _FACILITY,
        FieldSpec(
            "last_check_date", FieldKind.DATE, required=True,
            aliases=("datum_posledni_kontroly", "datum posledni kontroly", "last check date", "check date"),
            role=FieldRole.OCCURRENCE_DATE,
        ),
        _PERIOD,
        _REMIND,
        _STATUS,
        FieldSpec("performer", FieldKind.STRING, aliases=("provadejici", "performed by")),
        _COMPANY,
        _NOTE,
    ),
    subject_table="equipment",
    subject_key_column="inventory_number",
    subject_column="equipment_id",
    type_table="deadline_types",
    type_column="deadline_type_id",
    date_column="last_check_date",
    next_date_column="next_check_date",
)

MEDICAL_SPEC = RecordSpec(
    kind="medical",
    table="medical_examinations",
    fields=(
        _EMPLOYEE,
        FieldSpec(
            "examination_type_name", FieldKind.STRING, required=True,
            aliases=("typ_prohlidky", "typ prohlidky", "examination type", "examination"),
            role=FieldRole.RECORD_TYPE,
        ),
        _FACILITY,
        FieldSpec(
            "last_examination_date", FieldKind.DATE, required=True,
            aliases=(
                "datum_posledni_prohlidky", "datum posledni prohlidky", "last examination date", "examination date",
            ),
            role=FieldRole.OCCURRENCE_DATE,
        ),
        _PERIOD,
        _REMIND,
        _STATUS,
        FieldSpec("doctor", FieldKind.STRING, aliases=("lekar",)),
        FieldSpec(
            "medical_facility", FieldKind.STRING,
            aliases=("zdravotnicke_zarizeni", "zdravotnicke zarizeni", "medical facility"),
        ),
        FieldSpec("result", FieldKind.STRING, aliases=("vysledek", "zaver")),
        _NOTE,
    ),
    subject_table="employees",
    subject_key_column="employee_number",
    subject_column="employee_id",
    type_table="medical_examination_types",
    type_column="examination_type_id",
    date_column="last_examination_date",
    next_date_column="next_examination_date",
)

RECORD_SPECS: dict[str, RecordSpec] = {
    TRAINING_SPEC.kind: TRAINING_SPEC,
    DEADLINE_SPEC.kind: DEADLINE_SPEC,
    MEDICAL_SPEC.kind: MEDICAL_SPEC,
}


def get_record_spec(kind: str, extra_aliases: dict[str, dict[str, list[str]]] | None = None) -> RecordSpec:
    """Look up a record kind and fold in the configured extra header aliases."""
    try:
        spec = RECORD_SPECS[kind]
    except KeyError:
        raise KeyError(f"unknown record kind '{kind}' (expected one of: {', '.join(RECORD_SPECS)})") from None
    if extra_aliases:
        spec = spec.with_extra_aliases(extra_aliases.get(kind))
    return spec
