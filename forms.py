"""Shared plumbing for WTForms fed from JSON request bodies."""
import re

from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import StringField

from errors import ValidationError

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _is_text_field(form_cls, name: str) -> bool:
    unbound = getattr(form_cls, name, None)
    field_class = getattr(unbound, "field_class", None)
    return isinstance(field_class, type) and issubclass(field_class, StringField)


def _form_value(form_cls, key: str, name: str, value):
    if isinstance(value, (list, dict)):
        raise ValidationError(f"{key} must be a single value")
    if _is_text_field(form_cls, name):
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        return value
    if isinstance(value, bool):
        # BooleanField treats "false" as unchecked
        return "true" if value else "false"
    return value if isinstance(value, str) else str(value)


def json_formdata(form_cls=None) -> MultiDict:
    """The JSON body as form data, camelCase keys mapped to field names.

    Every key carries exactly one string value. Text fields only accept
    JSON strings; numbers and booleans are passed on as their text form.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    formdata = MultiDict()
    for key, value in payload.items():
        if value is None:
            continue
        name = _snake(key)
        formdata[name] = _form_value(form_cls, key, name, value)
    return formdata


class JsonForm(FlaskForm):
    class Meta:
        # identity cookies are SameSite=Lax and the API only accepts JSON
        csrf = False

    @classmethod
    def from_json(cls):
        return cls(formdata=json_formdata(cls))

    def validated(self):
        if not self.validate():
            for errors in self.errors.values():
                if errors:
                    raise ValidationError(errors[0])
            raise ValidationError()
        return self
