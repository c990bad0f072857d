"""
Tests for the step runner and its compensating rollback.

Steps here record what they did in a shared journal; no vCloud calls.
"""

import logging
from unittest.mock import Mock

import pytest

from vcloud_cpi.entities import MEDIA_TYPE, Link, wrap_response
from vcloud_cpi.errors import ObjectNotFoundError, VCloudError
from vcloud_cpi.steps import AddCatalogItem, Delete, DeleteCatalogItem, PowerOff, PowerOn, Step
from vcloud_cpi.transaction import Transaction
from vcd_responses import BASE_URL


class Recorder(Step):
    """Appends perform/rollback events to client.journal."""

    fail_perform = False
    fail_rollback = False

    def perform(self, label):
        if self.fail_perform:
            raise VCloudError(f"{label} failed")
        self.client.journal.append(("perform", label))
        self.state[label] = True
        return label.upper()

    def rollback(self):
        if self.fail_rollback:
            raise VCloudError("cannot undo")
        self.client.journal.append(("rollback", self.name))

    def cleanup(self):
        self.client.journal.append(("cleanup", self.name))


class First(Recorder):
    pass


class Second(Recorder):
    pass


class Failing(Recorder):
    fail_perform = True


class BrokenRollback(Recorder):
    fail_rollback = True


@pytest.fixture
def fake_client():
    client = Mock()
    client.journal = []
    return client


# =============================================================================
# Step Tests
# =============================================================================


class TestStep:
    def test_run_captures_success(self, fake_client):
        result = First({}, fake_client).run("a")
        assert result.ok
        assert result.value == "A"
        assert result.step == "First"

    def test_run_captures_failure(self, fake_client):
        result = Failing({}, fake_client).run("a")
        assert not result.ok
        assert isinstance(result.error, VCloudError)

    def test_base_perform_not_implemented(self, fake_client):
        result = Step({}, fake_client).run()
        assert isinstance(result.error, NotImplementedError)


# =============================================================================
# Transaction Tests
# =============================================================================


class TestTransaction:
    """Tests for ordered execution and reverse-order rollback."""

    def test_steps_run_in_order(self, fake_client):
        with Transaction("ok", fake_client) as txn:
            assert txn.next(First, "a") == "A"
            assert txn.next(Second, "b") == "B"

        performed = [e for e in fake_client.journal if e[0] == "perform"]
        assert performed == [("perform", "a"), ("perform", "b")]
        assert ("rollback", "First") not in fake_client.journal
        assert [s.name for s in txn.completed_steps] == ["First", "Second"]

    def test_state_shared_between_steps(self, fake_client):
        with Transaction("ok", fake_client) as txn:
            txn.next(First, "a")
            txn.next(Second, "b")
        assert txn.state == {"a": True, "b": True}

    def test_failure_rolls_back_completed_steps_in_reverse(self, fake_client):
        txn = Transaction("partial", fake_client)

        with pytest.raises(VCloudError, match="c failed"):
            with txn:
                txn.next(First, "a")
                txn.next(Second, "b")
                txn.next(Failing, "c")

        rollbacks = [e for e in fake_client.journal if e[0] == "rollback"]
        assert rollbacks == [("rollback", "Second"), ("rollback", "First")]

    def test_failed_step_itself_not_rolled_back(self, fake_client):
        txn = Transaction("partial", fake_client)

        with pytest.raises(VCloudError):
            txn.next(First, "a")
            txn.next(Failing, "b")

        rollbacks = [e for e in fake_client.journal if e[0] == "rollback"]
        assert rollbacks == [("rollback", "First")]

    def test_first_step_failure_rolls_back_nothing(self, fake_client):
        with pytest.raises(VCloudError):
            Transaction("empty", fake_client).next(Failing, "a")

        assert not [e for e in fake_client.journal if e[0] == "rollback"]

    def test_rollback_failure_logged_and_collected(self, fake_client, caplog):
        """A failing rollback neither stops the others nor masks the error."""
        txn = Transaction("messy", fake_client)

        with caplog.at_level(logging.ERROR, logger="vcloud_cpi.transaction"):
            with pytest.raises(VCloudError, match="c failed"):
                txn.next(First, "a")
                txn.next(BrokenRollback, "b")
                txn.next(Failing, "c")

        assert ("rollback", "First") in fake_client.journal
        assert len(txn.rollback_errors) == 1
        name, error = txn.rollback_errors[0]
        assert name == "BrokenRollback"
        assert "cannot undo" in str(error)
        assert "Rollback of BrokenRollback failed" in caplog.text

    def test_rollback_runs_once(self, fake_client):
        txn = Transaction("twice", fake_client)
        txn.next(First, "a")

        txn.rollback()
        txn.rollback()

        assert fake_client.journal.count(("rollback", "First")) == 1

    def test_cleanup_runs_for_every_step(self, fake_client):
        txn = Transaction("cleanup", fake_client)

        with pytest.raises(VCloudError):
            with txn:
                txn.next(First, "a")
                txn.next(Failing, "b")

        cleanups = [e for e in fake_client.journal if e[0] == "cleanup"]
        assert cleanups == [("cleanup", "Failing"), ("cleanup", "First")]

    def test_exception_in_body_rolls_back(self, fake_client):
        with pytest.raises(RuntimeError):
            with Transaction("body", fake_client) as txn:
                txn.next(First, "a")
                raise RuntimeError("caller gave up")

        assert ("rollback", "First") in fake_client.journal

    def test_perform_returns_state(self, fake_client):
        state = Transaction.perform("plan", fake_client, [
            (First, ("a",)),
            (Second, (), {"label": "b"}),
        ])
        assert state == {"a": True, "b": True}

    def test_perform_propagates_original_error(self, fake_client):
        with pytest.raises(VCloudError, match="b failed"):
            Transaction.perform("plan", fake_client, [
                (First, ("a",)),
                (Failing, ("b",)),
            ])

        assert ("rollback", "First") in fake_client.journal


# =============================================================================
# Concrete Step Tests
# =============================================================================


CATALOG_XML = f"""<Catalog xmlns="http://www.vmware.com/vcloud/v1.5" name="media-catalog"
    href="{BASE_URL}/api/catalog/32">
  <Link rel="add" type="{MEDIA_TYPE['CATALOG_ITEM']}" href="{BASE_URL}/api/catalog/32/catalogItems"/>
</Catalog>"""


class TestAddCatalogItem:
    """Tests for publishing an item in a catalog."""

    @pytest.fixture
    def media(self):
        return Link(href=f"{BASE_URL}/api/media/41", type=MEDIA_TYPE["MEDIA"], name="iso-1")

    def test_perform_posts_item(self, media):
        client = Mock()
        client.catalog.return_value = wrap_response(CATALOG_XML)
        created = Mock(href=f"{BASE_URL}/api/catalogItem/7")
        client.invoke.return_value = created
        state = {}

        step = AddCatalogItem(state, client)
        result = step.perform("media", media, "boot iso")

        assert result is created
        assert state[step.state_key] is created
        assert step.state_key.startswith("catalog_item:")
        client.catalog.assert_called_once_with("media")

        method, link = client.invoke.call_args.args
        assert method == "POST"
        assert link.href == f"{BASE_URL}/api/catalog/32/catalogItems"
        payload = client.invoke.call_args.kwargs["payload"]
        assert b'name="iso-1"' in payload
        assert f'href="{BASE_URL}/api/media/41"'.encode() in payload
        assert b"boot iso" in payload
        assert client.invoke.call_args.kwargs["headers"] == {"Content-Type": MEDIA_TYPE["CATALOG_ITEM"]}

    def test_perform_without_add_link(self, media):
        client = Mock()
        client.catalog.return_value = wrap_response(
            f'<Catalog xmlns="http://www.vmware.com/vcloud/v1.5" name="ro" href="{BASE_URL}/c"/>'
        )

        with pytest.raises(ObjectNotFoundError):
            AddCatalogItem({}, client).perform("media", media)
        client.invoke.assert_not_called()

    def test_rollback_deletes_item(self, media):
        client = Mock()
        created = Mock()
        state = {}

        step = AddCatalogItem(state, client)
        state[step.state_key] = created
        step.rollback()

        client.invoke.assert_called_once_with("DELETE", created)
        assert step.state_key not in state

        step.rollback()
        assert client.invoke.call_count == 1

    def test_rollback_without_state_is_noop(self):
        client = Mock()
        AddCatalogItem({}, client).rollback()
        client.invoke.assert_not_called()

    def test_two_items_in_one_transaction_both_rolled_back(self, media):
        """Each AddCatalogItem keeps its own entry in the shared state."""
        client = Mock()
        client.catalog.return_value = wrap_response(CATALOG_XML)
        first = Mock(name="first-item")
        second = Mock(name="second-item")
        client.invoke.side_effect = [first, second, None, None, None]
        other = Link(href=f"{BASE_URL}/api/media/42", type=MEDIA_TYPE["MEDIA"], name="iso-2")

        with pytest.raises(VCloudError, match="c failed"):
            with Transaction("publish", client) as txn:
                txn.next(AddCatalogItem, "media", media)
                txn.next(AddCatalogItem, "media", other)
                txn.next(Failing, "c")

        deletes = [c.args for c in client.invoke.call_args_list if c.args[0] == "DELETE"]
        assert deletes == [("DELETE", second), ("DELETE", first)]
        assert txn.state == {}


class TestDeleteSteps:
    def test_delete_uses_remove_link(self):
        client = Mock()
        client.invoke.return_value = None
        entity = Mock()

        Delete({}, client).perform(entity)
        client.invoke.assert_called_once_with("DELETE", entity.remove_link)

    def test_delete_waits_for_task(self):
        client = Mock()
        task = wrap_response(
            f'<Task xmlns="http://www.vmware.com/vcloud/v1.5" status="queued" href="{BASE_URL}/api/task/1"/>'
        )
        client.invoke.return_value = task

        Delete({}, client).perform(Link(href=f"{BASE_URL}/api/vAppTemplate/1"))
        client.wait_task.assert_called_once_with(task, accept_failure=False)

    def test_forced_delete_ignores_errors(self):
        client = Mock()
        client.invoke.side_effect = VCloudError("gone")

        assert Delete({}, client).perform(Mock(), force=True) is None

    def test_delete_catalog_item(self):
        client = Mock()
        item = Mock()
        DeleteCatalogItem({}, client).perform(item)
        client.invoke.assert_called_once_with("DELETE", item)


class TestPowerSteps:
    def test_power_on_and_rollback(self):
        client = Mock()
        vapp = Mock(is_powered_on=False)
        client.reload.return_value = vapp
        state = {}

        step = PowerOn(state, client)
        step.perform(vapp)
        client.invoke.assert_called_once_with("POST", vapp.power_on_link)
        assert state[step.state_key] is vapp

        step.rollback()
        client.invoke.assert_called_with("POST", vapp.power_off_link)
        assert state == {}

    def test_power_on_already_on_records_nothing(self):
        client = Mock()
        client.reload.return_value = Mock(is_powered_on=True)
        state = {}

        PowerOn(state, client).perform(Mock())

        client.invoke.assert_not_called()
        assert state == {}

    def test_power_off(self):
        client = Mock()
        vapp = Mock(is_powered_on=True)
        client.reload.return_value = vapp
        state = {}

        step = PowerOff(state, client)
        step.perform(vapp)

        client.invoke.assert_called_once_with("POST", vapp.power_off_link)
        client.wait_task.assert_called_once()
        assert state[step.state_key] is vapp
