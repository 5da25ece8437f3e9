"""
Tests for the notification dispatcher.
"""
import asyncio
import uuid

import pytest

from orderflow.core import NotificationTarget
from orderflow.exceptions import NotificationNotFound, StoreUnavailable


async def _register(users, count: int, active: bool = True) -> list:
    registered = []
    for index in range(count):
        email = f"user-{uuid.uuid4().hex[:8]}-{index}@example.com"
        user = await users.register(email, is_active=active)
        registered.append(user["id"])
    return registered


class TestNotificationTarget:
    """Test recipient selection."""

    @pytest.mark.unit
    def test_exactly_one_of_user_or_global(self) -> None:
        with pytest.raises(ValueError):
            NotificationTarget()
        with pytest.raises(ValueError):
            NotificationTarget(user_id=uuid.uuid4(), is_global=True)

        assert NotificationTarget.everyone().is_global is True


class TestSend:
    """Test sending notifications."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_targeted_send(self, notifications, audit, user_id) -> None:
        result = await notifications.send(
            NotificationTarget.user(user_id), "Hello", "Welcome aboard", "info", "operator"
        )

        assert len(result.notification_ids) == 1
        assert result.failed_count == 0
        inbox = await notifications.list_for_user(user_id)
        assert inbox["notifications"][0]["title"] == "Hello"
        assert inbox["notifications"][0]["is_global"] is False
        sent = await audit.list_events(event_type="notification_sent")
        assert sent[0]["entity_id"] == result.notification_ids[0]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_kind_rejected(self, notifications, user_id) -> None:
        with pytest.raises(ValueError):
            await notifications.send(
                NotificationTarget.user(user_id), "Hi", "Body", "urgent", "operator"
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_global_send_reaches_every_active_user(self, notifications, users) -> None:
        active = await _register(users, 5)
        inactive = await _register(users, 2, active=False)

        result = await notifications.send(
            NotificationTarget.everyone(), "Maintenance", "Tonight at 2am", "warning", "operator"
        )

        assert result.failed_count == 0
        assert len(result.notification_ids) == 5
        for recipient in active:
            inbox = await notifications.list_for_user(recipient)
            assert inbox["unread_count"] == 1
            assert inbox["notifications"][0]["is_global"] is True
        for recipient in inactive:
            assert (await notifications.list_for_user(recipient))["notifications"] == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_global_send_survives_one_failed_recipient(
        self, notifications, users, audit, mocker
    ) -> None:
        recipients = await _register(users, 5)
        doomed = recipients[2]
        write_recipient = notifications._write_recipient

        async def flaky_write(user_id, *args, **kwargs):
            if str(user_id) == doomed:
                raise StoreUnavailable("simulated write failure")
            return await write_recipient(user_id, *args, **kwargs)

        mocker.patch.object(notifications, "_write_recipient", side_effect=flaky_write)

        result = await notifications.send(
            NotificationTarget.everyone(), "News", "New packs available", "info", "operator"
        )

        assert result.failed_count == 1
        assert result.failed_user_ids == [doomed]
        assert len(result.notification_ids) == 4
        for recipient in recipients:
            total = (await notifications.list_for_user(recipient))["pagination"]["total"]
            assert total == (0 if recipient == doomed else 1)
        summary = await audit.list_events(event_type="global_notification_sent")
        assert summary[0]["event_data"]["failed_user_ids"] == [doomed]


class TestReadState:
    """Test per-user read state."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_mark_read_only_affects_owner(self, notifications, users) -> None:
        alice, bob = await _register(users, 2)
        await notifications.send(
            NotificationTarget.everyone(), "News", "Body", "info", "operator"
        )
        alice_note = (await notifications.list_for_user(alice))["notifications"][0]
        bob_note = (await notifications.list_for_user(bob))["notifications"][0]

        await notifications.mark_read(alice, alice_note["id"])

        alice_inbox = await notifications.list_for_user(alice)
        bob_inbox = await notifications.list_for_user(bob)
        assert alice_inbox["unread_count"] == 0
        assert alice_inbox["notifications"][0]["read_at"] is not None
        assert bob_inbox["unread_count"] == 1
        with pytest.raises(NotificationNotFound):
            await notifications.mark_read(alice, bob_note["id"])

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_mark_read_keeps_first_read_time(self, notifications, user_id) -> None:
        sent = await notifications.send(
            NotificationTarget.user(user_id), "Hi", "Body", "info", "operator"
        )
        notification_id = sent.notification_ids[0]

        await notifications.mark_read(user_id, notification_id)
        first = (await notifications.list_for_user(user_id))["notifications"][0]["read_at"]
        await asyncio.sleep(0.01)
        await notifications.mark_read(user_id, notification_id)
        second = (await notifications.list_for_user(user_id))["notifications"][0]["read_at"]

        assert first is not None
        assert second == first

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_mark_all_read_and_unread_filter(self, notifications, user_id) -> None:
        target = NotificationTarget.user(user_id)
        for index in range(3):
            await notifications.send(target, f"Note {index}", "Body", "info", "operator")

        unread = await notifications.list_for_user(user_id, unread_only=True)
        assert len(unread["notifications"]) == 3

        assert await notifications.mark_all_read(user_id) == 3
        assert await notifications.mark_all_read(user_id) == 0
        unread = await notifications.list_for_user(user_id, unread_only=True)
        assert unread["notifications"] == []
        assert unread["unread_count"] == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_delete_own_only(self, notifications, user_id) -> None:
        result = await notifications.send(
            NotificationTarget.user(user_id), "Hi", "Body", "info", "operator"
        )
        notification_id = result.notification_ids[0]

        with pytest.raises(NotificationNotFound):
            await notifications.delete(uuid.uuid4(), notification_id)
        await notifications.delete(user_id, notification_id)
        with pytest.raises(NotificationNotFound):
            await notifications.delete(user_id, notification_id)


class TestOperatorViews:
    """Test operator listing and deletion."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_all_filters_and_delete_any(self, notifications, users, user_id) -> None:
        await _register(users, 2)
        await notifications.send(NotificationTarget.everyone(), "G", "Body", "info", "operator")
        targeted = await notifications.send(
            NotificationTarget.user(user_id), "T", "Body", "error", "operator"
        )

        assert (await notifications.list_all())["pagination"]["total"] == 3
        assert (await notifications.list_all(is_global=True))["pagination"]["total"] == 2
        errors = await notifications.list_all(kind="error")
        assert [n["title"] for n in errors["notifications"]] == ["T"]

        await notifications.delete_any(targeted.notification_ids[0], deleted_by="operator")

        assert (await notifications.list_all(user_id=user_id))["notifications"] == []
        with pytest.raises(NotificationNotFound):
            await notifications.delete_any(targeted.notification_ids[0], deleted_by="operator")
