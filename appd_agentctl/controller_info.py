#!/usr/bin/env python3
"""
AppDynamics Agent Control - controller-info.xml Editor
Parses the agent's controller-info.xml, applies ControllerSettings through a
tag -> setting schema, and writes it back with comments and element order
intact.
"""

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional

from .config import ControllerSettings
from .errors import ConfigurationError
from .logger import get_logger

logger = get_logger('controller_info')

# XML tag -> ControllerSettings attribute
FIELD_SCHEMA: Dict[str, str] = {
    'controller-host': 'host',
    'controller-port': 'port',
    'controller-ssl-enabled': 'ssl_enabled',
    'enable-orchestration': 'orchestration',
    'unique-host-id': 'unique_host_id',
    'account-access-key': 'access_key',
    'account-name': 'account_name',
    'sim-enabled': 'sim_enabled',
    'is-sap-machine': 'sap_machine',
    'machine-path': 'machine_path',
    'application-name': 'application_name',
    'tier-name': 'tier_name',
    'node-name': 'node_name',
}

# Identity tags the stock file lacks, and the sibling each one follows
INSERT_AFTER: Dict[str, str] = {
    'application-name': 'unique-host-id',
    'tier-name': 'application-name',
    'node-name': 'tier-name',
}

SECRET_TAGS = ('account-access-key',)


class ControllerInfo:
    """In-memory controller-info.xml document."""

    def __init__(self, tree: ET.ElementTree, path: Path = None,
                 xml_declaration: bool = True):
        self.tree = tree
        self.root = tree.getroot()
        self.path = path
        self.xml_declaration = xml_declaration

    @classmethod
    def load(cls, path: Path) -> 'ControllerInfo':
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Configuration file not found: {path}")
        parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
        try:
            tree = ET.parse(path, parser=parser)
        except ET.ParseError as e:
            raise ConfigurationError(f"Cannot parse {path}: {e}") from e
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            has_decl = f.read(64).lstrip().startswith('<?xml')
        return cls(tree, path, has_decl)

    # ------------------------------------------------------------------
    # Field access
    # ------------------------------------------------------------------

    def get(self, tag: str) -> Optional[str]:
        element = self.root.find(tag)
        if element is None or element.text is None:
            return None
        return element.text.strip() or None

    def _index_of(self, tag: str) -> int:
        for i, child in enumerate(list(self.root)):
            if child.tag == tag:
                return i
        return -1

    def _insert(self, tag: str) -> ET.Element:
        element = ET.Element(tag)
        children = list(self.root)
        anchor_tag = INSERT_AFTER.get(tag)
        idx = self._index_of(anchor_tag) if anchor_tag else -1

        if idx >= 0:
            anchor = children[idx]
            element.tail = anchor.tail
            self.root.insert(idx + 1, element)
        else:
            # append after the last element, keeping the closing-tag indent
            if children:
                last = children[-1]
                element.tail = last.tail
                last.tail = (self.root.text or '\n    ')
            else:
                element.tail = '\n'
            self.root.append(element)
        return element

    def set(self, tag: str, value: str) -> bool:
        """Set a tag's text, inserting the element if needed. Returns True on change."""
        element = self.root.find(tag)
        if element is None:
            element = self._insert(tag)
            logger.debug(f"Inserted <{tag}>")
        elif (element.text or '').strip() == value:
            return False
        element.text = value
        shown = '****' if tag in SECRET_TAGS else value
        logger.info(f"  {tag} = {shown}")
        return True

    def apply(self, controller: ControllerSettings) -> List[str]:
        """Write every supplied setting. Returns the tags that changed."""
        changed = []
        supplied = controller.supplied()
        for tag, attr in FIELD_SCHEMA.items():
            if attr in supplied and self.set(tag, supplied[attr]):
                changed.append(tag)
        return changed

    def save(self, path: Path = None):
        path = Path(path or self.path)
        self.tree.write(path, encoding='UTF-8', xml_declaration=self.xml_declaration)
        with open(path, 'a', encoding='utf-8') as f:
            f.write('\n')


def read_fields(path: Path, tags) -> Dict[str, Optional[str]]:
    """Read selected tag values; missing tags map to None."""
    info = ControllerInfo.load(path)
    return {tag: info.get(tag) for tag in tags}


def configure(path: Path, controller: ControllerSettings,
              keep_original: bool = True) -> List[str]:
    """Apply settings to a controller-info.xml file on disk."""
    path = Path(path)
    info = ControllerInfo.load(path)
    if keep_original:
        backup = path.with_name(path.name + '.backup')
        backup.write_bytes(path.read_bytes())
    changed = info.apply(controller)
    if changed:
        info.save()
    return changed
