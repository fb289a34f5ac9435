"""
Profile field converters.

Each converter moves one profile field between its LDAP attribute form and
its JSON form in Alfresco. Converters never raise: a value that cannot be
converted is logged and the field is left out (or blanked, when the
attribute is missing altogether).
"""

import re
import logging
from typing import Dict, List, Optional

from config import ProfileFieldSpec
from models import AttributeBag, ProfileFields


logger = logging.getLogger(__name__)


class FieldConverter:
    """Base class for converting one profile field between formats."""

    def __init__(self, attribute_name: str, json_name: str, multiple: bool = False):
        self.attribute_name = attribute_name
        self.json_name = json_name
        self.multiple = multiple

    def encode(self, fields: ProfileFields, attributes: AttributeBag):
        """Encode the LDAP attribute into `fields` (directory -> repository)."""
        values = self._values(attributes)

        if values is None:
            logger.debug(f"Missing attribute: {self.attribute_name}")
            fields[self.json_name] = [] if self.multiple else self.blank()
            return

        if not values:
            logger.error(f"Attribute {self.attribute_name} contains no values")
            return

        if self.multiple:
            entries = []
            for value in values:
                entry = self.to_json_value(value)
                if entry is not None:
                    entries.append(entry)
            fields[self.json_name] = entries
            return

        if len(values) != 1:
            logger.error(f"Expected single value in attribute {self.attribute_name}, found {len(values)}")
            return

        entry = self.to_json_value(values[0])
        if entry is not None:
            fields[self.json_name] = entry

    def decode(self, attributes: AttributeBag, fields: ProfileFields):
        """Decode the JSON field into `attributes` (repository -> directory)."""
        if self.json_name not in fields:
            logger.error(f"Missing profile field: {self.json_name}")
            return

        raw = fields[self.json_name]
        if self.multiple:
            if not isinstance(raw, list):
                logger.error(f"Expected a list for profile field {self.json_name}, got {type(raw).__name__}")
                return
            items = raw
        else:
            items = [raw]

        values = []
        for item in items:
            value = self.to_attribute_value(item)
            if value:
                values.append(value)
        attributes[self.attribute_name] = values

    def _values(self, attributes: AttributeBag) -> Optional[List[str]]:
        for name, values in attributes.items():
            if name.lower() == self.attribute_name.lower():
                return values
        return None

    def blank(self):
        raise NotImplementedError

    def to_json_value(self, value: str):
        raise NotImplementedError

    def to_attribute_value(self, item) -> Optional[str]:
        raise NotImplementedError


class TextFieldConverter(FieldConverter):
    """Plain text fields, truncated to what Alfresco will store."""

    MAX_STRING_LENGTH = 1996

    def blank(self):
        return ""

    def to_json_value(self, value: str) -> str:
        if len(value) > self.MAX_STRING_LENGTH:
            value = value[:self.MAX_STRING_LENGTH - 1]
        return value

    def to_attribute_value(self, item) -> Optional[str]:
        if not isinstance(item, str):
            logger.error(f"Expected text in profile field {self.json_name}, got {type(item).__name__}")
            return None
        return item


class TelephoneFieldConverter(FieldConverter):
    """
    Telephone numbers, stored in LDAP as "network,number,extension" and in
    Alfresco as {"network": ..., "number": ..., "extension": ...}.
    """

    NETWORK_PATTERN = re.compile(r"[A-Z0-9\- ]+")
    NUMBER_PATTERN = re.compile(r"[0-9 *()+#]+")
    EXTENSION_PATTERN = re.compile(r"[0-9 *()+#]*")

    def blank(self) -> Dict[str, str]:
        return {"network": "", "number": "", "extension": ""}

    def _valid(self, network: str, number: str, extension: str) -> bool:
        if not self.NETWORK_PATTERN.fullmatch(network):
            logger.error(f"Telephone network is not valid: {network}")
            return False
        if not self.NUMBER_PATTERN.fullmatch(number):
            logger.error(f"Telephone number is not valid: {number}")
            return False
        if not self.EXTENSION_PATTERN.fullmatch(extension):
            logger.error(f"Telephone extension is not valid: {extension}")
            return False
        return True

    def to_json_value(self, value: str) -> Optional[Dict[str, str]]:
        parts = value.split(",")
        if len(parts) != 3:
            logger.error(f"Expected 3 fields for telephone number, found {len(parts)} fields: {value}")
            return None

        network, number, extension = parts
        if not self._valid(network, number, extension):
            logger.error(f"Failed to parse telephone number from: {value}")
            return None
        return {"network": network, "number": number, "extension": extension}

    def to_attribute_value(self, item) -> Optional[str]:
        if not isinstance(item, dict):
            logger.error(f"Expected an object in profile field {self.json_name}, got {type(item).__name__}")
            return None

        try:
            network, number, extension = item["network"], item["number"], item["extension"]
        except KeyError as e:
            logger.error(f"Telephone entry in {self.json_name} is missing {e}")
            return None

        if not all(isinstance(part, str) for part in (network, number, extension)):
            logger.error(f"Telephone entry in {self.json_name} has non-text parts: {item}")
            return None
        if not self._valid(network, number, extension):
            return None
        return f"{network},{number},{extension}"


CONVERTER_TYPES = {
    "text": TextFieldConverter,
    "telephone": TelephoneFieldConverter,
}


def build_converters(specs: List[ProfileFieldSpec]) -> List[FieldConverter]:
    """Create a converter per configured profile field, skipping unknown types."""
    converters = []
    for spec in specs:
        converter_class = CONVERTER_TYPES.get(spec.field_type)
        if converter_class is None:
            logger.error(f"Unrecognised profile field type: {spec.field_type}")
            continue
        logger.info(f"Loading profile field converter: {spec.ldap_name} -> {spec.alfresco_name}")
        converters.append(converter_class(spec.ldap_name, spec.alfresco_name, spec.multiple))
    return converters
