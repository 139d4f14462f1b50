import databases
import sqlalchemy
from civicapi.config import config

metadata = sqlalchemy.MetaData()


def audit_columns():
    return [
        sqlalchemy.Column("created_by", sqlalchemy.Integer, nullable=True),
        sqlalchemy.Column("updated_by", sqlalchemy.Integer, nullable=True),
        sqlalchemy.Column("created_at", sqlalchemy.DateTime, default=sqlalchemy.func.now()),
        sqlalchemy.Column(
            "updated_at",
            sqlalchemy.DateTime,
            default=sqlalchemy.func.now(),
            onupdate=sqlalchemy.func.now(),
        ),
    ]


def status_column():
    # 1 = active, 0 = soft-deleted
    return sqlalchemy.Column("status", sqlalchemy.Integer, nullable=False, default=1)


user_table = sqlalchemy.Table(
    "tbl_user",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("email", sqlalchemy.String(255), unique=True),
    sqlalchemy.Column("username", sqlalchemy.String(128), nullable=True),
    sqlalchemy.Column("confirmed", sqlalchemy.Boolean, default=False),
    status_column(),
    *audit_columns(),
)

userprofile_table = sqlalchemy.Table(
    "tbl_user_profile",
    metadata,
    sqlalchemy.Column("user_id", sqlalchemy.ForeignKey("tbl_user.id"), primary_key=True),
    sqlalchemy.Column("full_name", sqlalchemy.String(255), nullable=True),
    sqlalchemy.Column("ward_number_id", sqlalchemy.Integer, nullable=True),
    sqlalchemy.Column("booth_number_id", sqlalchemy.Integer, nullable=True),
    *audit_columns(),
)

# depth_path encodes the role hierarchy, e.g. /1/9/10 is a child of /1/9
role_table = sqlalchemy.Table(
    "tbl_meta_user_role",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("disp_name", sqlalchemy.String(100), unique=True, nullable=False),
    sqlalchemy.Column("depth_path", sqlalchemy.String(255), nullable=True),
    status_column(),
    *audit_columns(),
)

user_role_table = sqlalchemy.Table(
    "tbl_xref_user_role",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("user_id", sqlalchemy.ForeignKey("tbl_user.id"), nullable=False),
    sqlalchemy.Column("role_id", sqlalchemy.ForeignKey("tbl_meta_user_role.id"), nullable=False),
    status_column(),
    *audit_columns(),
    sqlalchemy.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)

wardnumber_table = sqlalchemy.Table(
    "tbl_meta_ward_number",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("disp_name", sqlalchemy.String(100), nullable=False),
    status_column(),
    *audit_columns(),
)

boothnumber_table = sqlalchemy.Table(
    "tbl_meta_booth_number",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("ward_number_id", sqlalchemy.ForeignKey("tbl_meta_ward_number.id"), nullable=True),
    sqlalchemy.Column("disp_name", sqlalchemy.String(100), nullable=False),
    status_column(),
    *audit_columns(),
)

sector_table = sqlalchemy.Table(
    "tbl_meta_sector",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("disp_name", sqlalchemy.String(100), nullable=False),
    status_column(),
    *audit_columns(),
)

fieldtype_table = sqlalchemy.Table(
    "tbl_meta_field_type",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("field_type", sqlalchemy.String(50), nullable=False),  # text, number, date, ...
    sqlalchemy.Column("disp_name", sqlalchemy.String(100), nullable=False),
    status_column(),
    *audit_columns(),
)

inputformat_table = sqlalchemy.Table(
    "tbl_meta_input_format",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("field_type", sqlalchemy.String(50), nullable=False),
    sqlalchemy.Column("disp_name", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("target_value", sqlalchemy.String(100), nullable=True),
    status_column(),
    *audit_columns(),
)

metatableregistry_table = sqlalchemy.Table(
    "tbl_meta_table_registry",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("name", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("table_name", sqlalchemy.String(100), nullable=False, unique=True),
    sqlalchemy.Column("display_name", sqlalchemy.String(150), nullable=False),
    sqlalchemy.Column("description", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("primary_key", sqlalchemy.String(64), nullable=False, default="id"),
    sqlalchemy.Column("searchable_fields", sqlalchemy.JSON, default=[]),
    sqlalchemy.Column("has_status", sqlalchemy.Boolean, default=True),
    status_column(),
    *audit_columns(),
)

form_table = sqlalchemy.Table(
    "tbl_form",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("title", sqlalchemy.String(255), nullable=False),
    sqlalchemy.Column("description", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("slug", sqlalchemy.String(255), nullable=True),
    sqlalchemy.Column("is_public", sqlalchemy.Boolean, default=True),
    sqlalchemy.Column("start_at", sqlalchemy.DateTime, nullable=True),
    sqlalchemy.Column("end_at", sqlalchemy.DateTime, nullable=True),
    status_column(),
    *audit_columns(),
)

formfield_table = sqlalchemy.Table(
    "tbl_form_field",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("form_id", sqlalchemy.ForeignKey("tbl_form.id"), nullable=False),
    sqlalchemy.Column("field_key", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("label", sqlalchemy.String(255), nullable=False),
    sqlalchemy.Column("help_text", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("field_type_id", sqlalchemy.ForeignKey("tbl_meta_field_type.id"), nullable=False),
    sqlalchemy.Column("input_format_id", sqlalchemy.ForeignKey("tbl_meta_input_format.id"), nullable=True),
    sqlalchemy.Column("is_required", sqlalchemy.Boolean, default=False),
    sqlalchemy.Column("sort_order", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("placeholder", sqlalchemy.String(255), nullable=True),
    sqlalchemy.Column("default_value", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("validation_regex", sqlalchemy.String(500), nullable=True),
    sqlalchemy.Column("min_length", sqlalchemy.Integer, nullable=True),
    sqlalchemy.Column("max_length", sqlalchemy.Integer, nullable=True),
    # numeric bounds are kept as decimal strings
    sqlalchemy.Column("min_value", sqlalchemy.String(50), nullable=True),
    sqlalchemy.Column("max_value", sqlalchemy.String(50), nullable=True),
    sqlalchemy.Column("attrs_json", sqlalchemy.JSON, nullable=True),
    sqlalchemy.Column("meta_table", sqlalchemy.String(100), nullable=True),
    *audit_columns(),
    sqlalchemy.UniqueConstraint("form_id", "field_key", name="uq_form_field_key"),
)

formfieldoption_table = sqlalchemy.Table(
    "tbl_form_field_option",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("field_id", sqlalchemy.ForeignKey("tbl_form_field.id"), nullable=False),
    sqlalchemy.Column("option_label", sqlalchemy.String(255), nullable=False),
    sqlalchemy.Column("option_value", sqlalchemy.String(255), nullable=False),
    sqlalchemy.Column("sort_order", sqlalchemy.Integer, default=0),
    sqlalchemy.Column("is_default", sqlalchemy.Boolean, default=False),
    status_column(),
    *audit_columns(),
)

formevent_table = sqlalchemy.Table(
    "tbl_form_event",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("form_id", sqlalchemy.ForeignKey("tbl_form.id"), nullable=False),
    sqlalchemy.Column("title", sqlalchemy.String(255), nullable=False),
    sqlalchemy.Column("description", sqlalchemy.Text, nullable=False),
    sqlalchemy.Column("start_date", sqlalchemy.Date, nullable=False),
    sqlalchemy.Column("end_date", sqlalchemy.Date, nullable=True),
    status_column(),
    *audit_columns(),
)

# ward_number_id / booth_number_id hold -1 for "any", so they carry no FK
formeventaccessibility_table = sqlalchemy.Table(
    "tbl_form_event_accessibility",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("form_event_id", sqlalchemy.ForeignKey("tbl_form_event.id"), nullable=False),
    sqlalchemy.Column("ward_number_id", sqlalchemy.Integer, nullable=False),
    sqlalchemy.Column("booth_number_id", sqlalchemy.Integer, nullable=False),
    sqlalchemy.Column("user_role_id", sqlalchemy.ForeignKey("tbl_meta_user_role.id"), nullable=False),
    status_column(),
    *audit_columns(),
)

# status: 1 submitted, 2 reviewed, 3 rejected, 0 deleted
formsubmission_table = sqlalchemy.Table(
    "tbl_form_submission",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("form_event_id", sqlalchemy.ForeignKey("tbl_form_event.id"), nullable=False),
    sqlalchemy.Column("submitted_by", sqlalchemy.ForeignKey("tbl_user.id"), nullable=False),
    sqlalchemy.Column("submitted_at", sqlalchemy.DateTime, nullable=False),
    sqlalchemy.Column("ip_address", sqlalchemy.String(64), nullable=True),
    sqlalchemy.Column("user_agent", sqlalchemy.String(512), nullable=True),
    status_column(),
    *audit_columns(),
)

formfieldvalue_table = sqlalchemy.Table(
    "tbl_form_field_value",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("form_submission_id", sqlalchemy.ForeignKey("tbl_form_submission.id"), nullable=False),
    sqlalchemy.Column("form_field_id", sqlalchemy.ForeignKey("tbl_form_field.id"), nullable=False),
    sqlalchemy.Column("field_key", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("value", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, default=sqlalchemy.func.now()),
    sqlalchemy.Column(
        "updated_at",
        sqlalchemy.DateTime,
        default=sqlalchemy.func.now(),
        onupdate=sqlalchemy.func.now(),
    ),
)


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}
engine = sqlalchemy.create_engine(config.DATABASE_URL, connect_args=connect_args)

metadata.create_all(engine)
database = databases.Database(
    config.DATABASE_URL, force_rollback=config.DB_FORCE_ROLL_BACK
)


def row_to_dict(row, table: sqlalchemy.Table) -> dict:
    return {column.name: row[column.name] for column in table.columns}
