import asyncio

import pytest

from promptloom.errors import NotFoundError, StorageUnavailableError
from promptloom.prompts.composer import DEFAULT_SYSTEM_PROMPT
from promptloom.session.manager import UNTITLED_DIALOG, DialogSessionManager, SessionState


@pytest.mark.asyncio
async def test_new_session_is_empty(session):
    assert session.state == SessionState.EMPTY
    assert session.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert session.current_dialog_id is None


@pytest.mark.asyncio
async def test_empty_session_save_is_noop(session, store):
    assert await session.save() is None
    assert await store.count("dialogs") == 0


@pytest.mark.asyncio
async def test_explicit_prompt_alone_is_saved(session, dialogs):
    session.set_system_prompt("You are terse.")

    dialog_id = await session.save()

    dialog = await dialogs.get_dialog(dialog_id)
    assert dialog.messages == []
    assert dialog.system_prompt == "You are terse."
    assert dialog.name == UNTITLED_DIALOG


@pytest.mark.asyncio
async def test_first_save_creates_and_later_saves_update(session, store, dialogs, clock):
    session.append_user_message("How do I reverse a list in Python?")
    first_id = await session.save()
    assert session.state == SessionState.ACTIVE
    assert session.current_dialog_id == first_id

    clock.advance(30)
    session.start_assistant_message("m1", "Use reversed().")
    second_id = await session.save()

    assert second_id == first_id
    assert await store.count("dialogs") == 1
    dialog = await dialogs.get_dialog(first_id)
    assert [m.content for m in dialog.messages] == [
        "How do I reverse a list in Python?",
        "Use reversed().",
    ]
    assert dialog.last_updated_at == clock.now
    assert dialog.created_at < dialog.last_updated_at


@pytest.mark.asyncio
async def test_saving_twice_without_changes_is_idempotent(session, store, dialogs):
    session.append_user_message("hello")
    dialog_id = await session.save()
    before = await dialogs.get_dialog(dialog_id)

    await session.save()
    after = await dialogs.get_dialog(dialog_id)

    assert await store.count("dialogs") == 1
    assert after.messages == before.messages
    assert after.name == before.name


@pytest.mark.asyncio
async def test_name_is_derived_from_first_message(session, dialogs):
    long_text = "  " + "x" * 80
    session.append_user_message(long_text)

    dialog = await dialogs.get_dialog(await session.save())

    assert dialog.name == ("x" * 48)


@pytest.mark.asyncio
async def test_overlapping_saves_create_one_record(session, store):
    session.append_user_message("race me")

    ids = await asyncio.gather(session.save(), session.save(), session.save())

    assert len(set(ids)) == 1
    assert await store.count("dialogs") == 1


@pytest.mark.asyncio
async def test_update_of_vanished_dialog_creates_new(session, store):
    session.append_user_message("hello")
    first_id = await session.save()
    await store.delete("dialogs", first_id)

    second_id = await session.save()

    assert second_id != first_id
    assert session.current_dialog_id == second_id
    assert await store.count("dialogs") == 1


@pytest.mark.asyncio
async def test_failed_save_keeps_messages_and_sets_error(session, store, data_dir):
    session.append_user_message("don't lose me")
    (data_dir / "dialogs.json").write_text("{corrupt", encoding="utf-8")

    with pytest.raises(StorageUnavailableError):
        await session.save()

    assert [m.content for m in session.messages] == ["don't lose me"]
    assert session.error
    assert session.current_dialog_id is None
    assert not session.is_loading


@pytest.mark.asyncio
async def test_load_dialog_by_id(session, dialogs):
    dialog_id = await dialogs.save_dialog([], "Be brief.", "Saved", None)

    loaded = await session.load_dialog_by_id(dialog_id)

    assert loaded.id == dialog_id
    assert session.state == SessionState.LOADED
    assert session.system_prompt == "Be brief."
    assert session.name == "Saved"


@pytest.mark.asyncio
async def test_load_missing_dialog(session):
    with pytest.raises(NotFoundError):
        await session.load_dialog_by_id(99)


@pytest.mark.asyncio
async def test_loaded_session_appends_to_same_record(session, dialogs, store):
    session.append_user_message("first")
    dialog_id = await session.save()
    session.clear()

    await session.load_dialog_by_id(dialog_id)
    session.append_user_message("second")
    await session.save()

    assert await store.count("dialogs") == 1
    dialog = await dialogs.get_dialog(dialog_id)
    assert [m.content for m in dialog.messages] == ["first", "second"]


@pytest.mark.asyncio
async def test_clear_resets_state(session):
    session.append_user_message("hello")
    await session.save()

    session.clear("Custom prompt")

    assert session.state == SessionState.EMPTY
    assert session.messages == []
    assert session.current_dialog_id is None
    assert session.system_prompt == "Custom prompt"


@pytest.mark.asyncio
async def test_rename_updates_current_name(session, dialogs):
    session.append_user_message("hello")
    dialog_id = await session.save()

    renamed = await session.rename(dialog_id, "Greetings")

    assert renamed.name == "Greetings"
    assert session.name == "Greetings"
    await session.save()
    assert (await dialogs.get_dialog(dialog_id)).name == "Greetings"


@pytest.mark.asyncio
async def test_delete_active_dialog_resets_session(session, store):
    events = []
    session.subscribe(lambda event, payload: events.append(event))
    session.append_user_message("hello")
    dialog_id = await session.save()

    await session.delete(dialog_id)

    assert session.state == SessionState.EMPTY
    assert session.current_dialog_id is None
    assert await store.count("dialogs") == 0
    assert events[-2:] == ["cleared", "deleted"]


@pytest.mark.asyncio
async def test_delete_other_dialog_keeps_session(session, dialogs):
    other_id = await dialogs.save_dialog([], None, "Other", None)
    session.append_user_message("mine")
    mine = await session.save()

    await session.delete(other_id)

    assert session.current_dialog_id == mine
    assert len(session.messages) == 1


@pytest.mark.asyncio
async def test_list_dialogs_most_recent_first(session, dialogs, clock):
    old = await dialogs.save_dialog([], None, "old", None)
    clock.advance(10)
    new = await dialogs.save_dialog([], None, "new", None)

    assert [d.id for d in await session.list_dialogs()] == [new, old]
    summaries = await dialogs.list_summaries()
    assert [s.name for s in summaries] == ["new", "old"]


@pytest.mark.asyncio
async def test_save_finishing_after_clear_does_not_reattach(dialogs, clock):
    session = DialogSessionManager(dialogs, clock=clock)
    session.append_user_message("in flight")

    save = asyncio.create_task(session.save())
    await asyncio.sleep(0)
    session.clear()
    await save

    assert session.current_dialog_id is None
    assert session.state == SessionState.EMPTY


def test_append_to_unknown_or_user_message(session):
    user = session.append_user_message("hi")
    with pytest.raises(LookupError):
        session.append_to_assistant_message("missing", "x")
    with pytest.raises(ValueError):
        session.append_to_assistant_message(user.id, "x")


def test_set_assistant_message_content(session):
    session.start_assistant_message("a1", "draft")
    session.set_assistant_message_content("a1", "final")
    assert session.get_message("a1").content == "final"


def test_history_excludes_system_messages(session):
    session.append_user_message("q")
    session.start_assistant_message("a1", "a")
    assert session.history() == [
        {"role": "user", "content": "q"},
        {"role": "assistant", "content": "a"},
    ]
