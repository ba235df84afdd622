"""Turn one queued sync task into a Markdown file in the vault.

Links get a folder of their own so that highlights and annotations taken
on them land beside the link note. Other rich-text notes go to the
rich-text directory.
"""

import logging
from typing import Any, Dict, List

from newledge import api
from newledge import renderer
from newledge import vault as vault_mod

log = logging.getLogger(__name__)

SUPER_LINK = "SUPER_LINK"
SUPER_RICH_TEXT = "SUPER_RICH_TEXT"

_ANCHORED_NOTE_TYPES = ("HIGHLIGHT", "ANNOTATION")


def sync_note(task_id: str, token: str, settings, vault) -> Dict[str, bool]:
    """Fetch, write and acknowledge one task.

    Returns {"plugin_enable", "task_exist", "sync_success"}. Raises if
    anything fails once the task is known to exist, after reporting the
    failure to the service.
    """
    if not settings.enable:
        return {"plugin_enable": False, "task_exist": False, "sync_success": False}

    try:
        note = api.fetch_note_content(task_id, token)
        if note["id"] is None:
            log.info("Task %s no longer exists", task_id)
            return {"plugin_enable": True, "task_exist": False, "sync_success": False}

        path = resolve_note_path(note, settings, vault)

        properties = flatten_properties(note["properties"])
        if note["super_type"] == SUPER_RICH_TEXT:
            properties_text = renderer.render_rich_text_property(properties)
        else:
            properties_text = renderer.render_link_property(properties)
        text = renderer.render_text(properties_text, note["text"], note["tag_list"])

        vault.write(path, text)

        try:
            api.ack_success(task_id, token)
        except Exception as e:
            log.warning("Could not acknowledge task %s: %s", task_id, e)

        return {"plugin_enable": True, "task_exist": True, "sync_success": True}

    except Exception as e:
        try:
            api.ack_failure(task_id, token, str(e))
        except Exception as ack_exc:
            log.debug("Could not report failure of task %s: %s", task_id, ack_exc)
        raise


def resolve_note_path(note: Dict[str, Any], settings, vault) -> str:
    """Pick a free vault path for a note, creating its folder if needed."""
    title = vault_mod.sanitize_title(note["title"])
    root = vault_mod.normalize_path(settings.root_dir)
    link_dir = vault_mod.normalize_path(settings.link_dir)
    rich_text_dir = vault_mod.normalize_path(settings.rich_text_dir)

    super_type = note["super_type"]
    if super_type == SUPER_LINK:
        folder = vault_mod.join(root, link_dir, title)
        vault.ensure_folder(folder)
        return vault.unique_note_path(f"{folder}/{title}")

    if super_type != SUPER_RICH_TEXT:
        log.warning("Unknown note type %r for '%s', saving as a note", super_type, title)

    if (
        note["note_type"] in _ANCHORED_NOTE_TYPES
        and note["related_content_title"]
        and note["related_content_super_type"] == SUPER_LINK
    ):
        related_title = vault_mod.sanitize_title(note["related_content_title"])
        folder = vault_mod.join(root, link_dir, related_title)
        vault.ensure_folder(folder)
        return vault.unique_note_path(f"{folder}/{title}")

    return vault.unique_note_path(vault_mod.join(root, rich_text_dir, title))


def flatten_properties(properties: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Collapse the property list into a mapping; later keys win."""
    flat: Dict[str, Any] = {}
    for prop in properties:
        flat[prop["key"]] = prop["value"]
    return flat
