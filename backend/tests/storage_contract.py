"""
Behaviour shared by every DbClient implementation.

Mix ``StorageContractTests`` into an ``IsolatedAsyncioTestCase`` that sets
``self.db`` to an empty backend and implements the two legacy-row hooks.
"""

import asyncio
from datetime import datetime, timezone

from backend.errors import ConflictError
from backend.records import (
    NewChatMessage,
    NewFinancialGoal,
    NewFinancialProfile,
    NewUser,
    timestamp_sort_key,
)


class StorageContractTests:
    db = None

    async def insert_message_without_timestamp(self, user_id: int, message: str):
        raise NotImplementedError

    async def insert_goal_without_created_at(self, user_id: int, title: str):
        raise NotImplementedError

    async def create_alice(self):
        return await self.db.create_user(
            NewUser(username="alice", email="a@x.com", password="h1")
        )

    async def create_bob(self):
        return await self.db.create_user(
            NewUser(username="bob", email="b@x.com", password="h2")
        )

    async def say(self, user_id: int, text: str, from_user: bool = True):
        return await self.db.create_chat_message(
            NewChatMessage(user_id=user_id, message=text, is_user_message=from_user)
        )

    async def add_goal(self, user_id: int, title: str, **overrides):
        fields = dict(
            user_id=user_id,
            title=title,
            target_amount=1000,
            current_amount=0,
            category="savings",
        )
        fields.update(overrides)
        return await self.db.create_financial_goal(NewFinancialGoal(**fields))

    # Users

    async def test_create_user_then_get_returns_same_record(self):
        user = await self.create_alice()
        self.assertEqual(user.id, 1)
        self.assertEqual(user.username, "alice")
        self.assertEqual(user.email, "a@x.com")
        self.assertEqual(user.password, "h1")
        self.assertIsNotNone(user.created_at)

        fetched = await self.db.get_user(user.id)
        self.assertEqual(fetched, user)

    async def test_lookup_by_username_and_email(self):
        alice = await self.create_alice()
        bob = await self.create_bob()
        self.assertEqual(await self.db.get_user_by_username("bob"), bob)
        self.assertEqual(await self.db.get_user_by_email("a@x.com"), alice)

    async def test_unknown_user_lookups_return_none(self):
        await self.create_alice()
        self.assertIsNone(await self.db.get_user(99))
        self.assertIsNone(await self.db.get_user_by_username("mallory"))
        self.assertIsNone(await self.db.get_user_by_email("m@x.com"))

    async def test_duplicate_username_is_a_conflict(self):
        await self.create_alice()
        with self.assertRaises(ConflictError) as ctx:
            await self.db.create_user(
                NewUser(username="alice", email="other@x.com", password="h3")
            )
        self.assertEqual(ctx.exception.field, "username")
        self.assertIsNone(await self.db.get_user_by_email("other@x.com"))

    async def test_duplicate_email_is_a_conflict(self):
        await self.create_alice()
        with self.assertRaises(ConflictError) as ctx:
            await self.db.create_user(
                NewUser(username="alice2", email="a@x.com", password="h3")
            )
        self.assertEqual(ctx.exception.field, "email")
        self.assertIsNone(await self.db.get_user_by_username("alice2"))

    # Financial profiles

    async def test_profile_create_get_and_missing(self):
        alice = await self.create_alice()
        self.assertIsNone(await self.db.get_financial_profile(alice.id))

        profile = await self.db.create_financial_profile(
            NewFinancialProfile(
                user_id=alice.id,
                monthly_income=5000,
                housing_expense=1500,
                risk_tolerance="moderate",
            )
        )
        self.assertEqual(profile.id, 1)
        self.assertEqual(profile.monthly_income, 5000)
        self.assertIsNone(profile.food_expense)
        self.assertIsNotNone(profile.updated_at)
        self.assertEqual(await self.db.get_financial_profile(alice.id), profile)

    async def test_profile_update_merges_and_refreshes_timestamp(self):
        alice = await self.create_alice()
        created = await self.db.create_financial_profile(
            NewFinancialProfile(
                user_id=alice.id, monthly_income=5000, food_expense=400
            )
        )

        updated = await self.db.update_financial_profile(
            alice.id, {"food_expense": 350, "risk_tolerance": "low"}
        )
        self.assertEqual(updated.id, created.id)
        self.assertEqual(updated.monthly_income, 5000)
        self.assertEqual(updated.food_expense, 350)
        self.assertEqual(updated.risk_tolerance, "low")
        self.assertGreaterEqual(
            timestamp_sort_key(updated.updated_at),
            timestamp_sort_key(created.updated_at),
        )
        self.assertEqual(await self.db.get_financial_profile(alice.id), updated)

    async def test_profile_update_without_profile_returns_none(self):
        alice = await self.create_alice()
        self.assertIsNone(
            await self.db.update_financial_profile(alice.id, {"monthly_income": 1})
        )

    async def test_profile_lookup_and_update_use_first_profile(self):
        alice = await self.create_alice()
        first = await self.db.create_financial_profile(
            NewFinancialProfile(user_id=alice.id, monthly_income=100)
        )
        second = await self.db.create_financial_profile(
            NewFinancialProfile(user_id=alice.id, monthly_income=200)
        )
        self.assertNotEqual(first.id, second.id)
        self.assertEqual((await self.db.get_financial_profile(alice.id)).id, first.id)

        updated = await self.db.update_financial_profile(
            alice.id, {"monthly_income": 150}
        )
        self.assertEqual(updated.id, first.id)

    async def test_profile_update_rejects_unknown_fields(self):
        alice = await self.create_alice()
        await self.db.create_financial_profile(NewFinancialProfile(user_id=alice.id))
        with self.assertRaises(ValueError):
            await self.db.update_financial_profile(alice.id, {"id": 7})
        with self.assertRaises(ValueError):
            await self.db.update_financial_profile(alice.id, {"salary": 7})

    # Chat messages

    async def test_messages_are_ordered_and_scoped_to_user(self):
        alice = await self.create_alice()
        bob = await self.create_bob()
        await self.say(alice.id, "one")
        await self.say(bob.id, "not yours")
        await self.say(alice.id, "two", from_user=False)
        await self.say(alice.id, "three")

        messages = await self.db.get_chat_messages(alice.id)
        self.assertEqual([m.message for m in messages], ["one", "two", "three"])
        self.assertEqual([m.is_user_message for m in messages], [True, False, True])
        keys = [timestamp_sort_key(m.timestamp) for m in messages]
        self.assertEqual(keys, sorted(keys))

    async def test_message_limit_returns_most_recent_in_order(self):
        alice = await self.create_alice()
        for text in ["a", "b", "c", "d"]:
            await self.say(alice.id, text)

        full = await self.db.get_chat_messages(alice.id)
        self.assertEqual(await self.db.get_chat_messages(alice.id, limit=2), full[-2:])
        self.assertEqual(
            [m.message for m in await self.db.get_chat_messages(alice.id, limit=2)],
            ["c", "d"],
        )
        self.assertEqual(await self.db.get_chat_messages(alice.id, limit=10), full)
        self.assertEqual(await self.db.get_chat_messages(alice.id, limit=0), full)
        self.assertEqual(await self.db.get_chat_messages(alice.id, limit=-3), full)

    async def test_messages_without_timestamp_sort_first_in_insertion_order(self):
        alice = await self.create_alice()
        await self.say(alice.id, "recent")
        await self.insert_message_without_timestamp(alice.id, "legacy 1")
        await self.insert_message_without_timestamp(alice.id, "legacy 2")

        messages = await self.db.get_chat_messages(alice.id)
        self.assertEqual(
            [m.message for m in messages], ["legacy 1", "legacy 2", "recent"]
        )
        self.assertIsNone(messages[0].timestamp)

        latest_two = await self.db.get_chat_messages(alice.id, limit=2)
        self.assertEqual([m.message for m in latest_two], ["legacy 2", "recent"])

    # Financial goals

    async def test_goal_scenario(self):
        alice = await self.create_alice()
        self.assertEqual(alice.id, 1)

        goal = await self.add_goal(alice.id, "Emergency Fund")
        self.assertEqual(goal.id, 1)
        self.assertEqual(goal.target_amount, 1000)
        self.assertEqual(goal.current_amount, 0)
        self.assertIsNone(goal.deadline)
        self.assertIsNotNone(goal.created_at)

        updated = await self.db.update_financial_goal(1, {"current_amount": 500})
        self.assertEqual(updated.id, 1)
        self.assertEqual(updated.current_amount, 500)
        self.assertEqual(updated.target_amount, 1000)

        self.assertTrue(await self.db.delete_financial_goal(1))
        self.assertIsNone(await self.db.get_financial_goal(1))

    async def test_goal_read_is_idempotent(self):
        alice = await self.create_alice()
        goal = await self.add_goal(alice.id, "Car")
        first = await self.db.get_financial_goal(goal.id)
        second = await self.db.get_financial_goal(goal.id)
        self.assertEqual(first, second)
        self.assertEqual(first, goal)

    async def test_goal_partial_update_changes_only_given_fields(self):
        alice = await self.create_alice()
        goal = await self.add_goal(alice.id, "Vacation", current_amount=120)

        updated = await self.db.update_financial_goal(goal.id, {"title": "X"})
        self.assertEqual(updated.title, "X")
        self.assertEqual(updated.target_amount, goal.target_amount)
        self.assertEqual(updated.current_amount, goal.current_amount)
        self.assertEqual(updated.category, goal.category)
        self.assertEqual(updated.deadline, goal.deadline)
        self.assertEqual(updated.created_at, goal.created_at)
        self.assertEqual(updated.user_id, goal.user_id)

    async def test_goal_update_missing_returns_none(self):
        self.assertIsNone(await self.db.update_financial_goal(42, {"title": "X"}))

    async def test_goal_update_rejects_timestamp_fields(self):
        alice = await self.create_alice()
        goal = await self.add_goal(alice.id, "House")
        with self.assertRaises(ValueError):
            await self.db.update_financial_goal(goal.id, {"created_at": None})

    async def test_goal_delete_succeeds_once(self):
        alice = await self.create_alice()
        goal = await self.add_goal(alice.id, "Laptop")
        self.assertTrue(await self.db.delete_financial_goal(goal.id))
        self.assertFalse(await self.db.delete_financial_goal(goal.id))
        self.assertFalse(await self.db.delete_financial_goal(goal.id))
        self.assertIsNone(await self.db.get_financial_goal(goal.id))
        self.assertFalse(await self.db.delete_financial_goal(999))

    async def test_goal_ids_are_not_reused_after_delete(self):
        alice = await self.create_alice()
        first = await self.add_goal(alice.id, "One")
        second = await self.add_goal(alice.id, "Two")
        await self.db.delete_financial_goal(second.id)
        third = await self.add_goal(alice.id, "Three")
        self.assertEqual([first.id, second.id, third.id], [1, 2, 3])

    async def test_goals_listed_by_creation_with_missing_dates_first(self):
        alice = await self.create_alice()
        bob = await self.create_bob()
        await self.add_goal(alice.id, "first")
        await self.add_goal(bob.id, "bob's")
        await self.add_goal(alice.id, "second")
        await self.insert_goal_without_created_at(alice.id, "legacy")

        goals = await self.db.get_financial_goals(alice.id)
        self.assertEqual([g.title for g in goals], ["legacy", "first", "second"])
        self.assertEqual(await self.db.get_financial_goals(999), [])

    async def test_returned_records_are_snapshots(self):
        alice = await self.create_alice()
        goal = await self.add_goal(alice.id, "Boat")
        goal.title = "changed locally"
        self.assertEqual((await self.db.get_financial_goal(goal.id)).title, "Boat")

    async def test_concurrent_goal_updates_keep_both_changes(self):
        alice = await self.create_alice()
        goal = await self.add_goal(alice.id, "Wedding")

        await asyncio.gather(
            self.db.update_financial_goal(goal.id, {"title": "Wedding 2027"}),
            self.db.update_financial_goal(goal.id, {"current_amount": 250}),
        )
        stored = await self.db.get_financial_goal(goal.id)
        self.assertEqual(stored.title, "Wedding 2027")
        self.assertEqual(stored.current_amount, 250)

    # Values

    async def test_timestamps_are_timezone_aware(self):
        alice = await self.create_alice()
        profile = await self.db.create_financial_profile(
            NewFinancialProfile(user_id=alice.id, monthly_income=1)
        )
        message = await self.say(alice.id, "hi")
        goal = await self.add_goal(alice.id, "Trip")

        self.assertIsNotNone(alice.created_at.tzinfo)
        self.assertIsNotNone((await self.db.get_user(alice.id)).created_at.tzinfo)
        self.assertIsNotNone(profile.updated_at.tzinfo)
        self.assertIsNotNone(
            (await self.db.get_financial_profile(alice.id)).updated_at.tzinfo
        )
        self.assertIsNotNone(message.timestamp.tzinfo)
        self.assertIsNotNone(
            (await self.db.get_chat_messages(alice.id))[0].timestamp.tzinfo
        )
        self.assertIsNotNone(goal.created_at.tzinfo)
        self.assertIsNotNone(
            (await self.db.get_financial_goal(goal.id)).created_at.tzinfo
        )

    async def test_goal_deadline_reads_back_unchanged(self):
        alice = await self.create_alice()
        deadline = datetime(2027, 1, 1, tzinfo=timezone.utc)
        goal = await self.add_goal(alice.id, "House", deadline=deadline)
        self.assertEqual(goal.deadline, deadline)
        self.assertEqual((await self.db.get_financial_goal(goal.id)).deadline, deadline)

        later = datetime(2028, 6, 30, 12, 0, tzinfo=timezone.utc)
        updated = await self.db.update_financial_goal(goal.id, {"deadline": later})
        self.assertEqual(updated.deadline, later)
        self.assertIsNotNone(updated.deadline.tzinfo)

    async def test_amounts_are_rounded_to_cents(self):
        alice = await self.create_alice()
        goal = await self.add_goal(
            alice.id, "Coins", target_amount=0.125, current_amount=99.999
        )
        self.assertEqual(goal.target_amount, 0.13)
        self.assertEqual(goal.current_amount, 100.0)
        stored = await self.db.get_financial_goal(goal.id)
        self.assertEqual((stored.target_amount, stored.current_amount), (0.13, 100.0))

        updated = await self.db.update_financial_goal(goal.id, {"current_amount": 10.005})
        self.assertEqual(updated.current_amount, 10.01)

        profile = await self.db.create_financial_profile(
            NewFinancialProfile(user_id=alice.id, monthly_income=4000.456)
        )
        self.assertEqual(profile.monthly_income, 4000.46)
        self.assertIsNone(profile.housing_expense)
        patched = await self.db.update_financial_profile(
            alice.id, {"food_expense": 0.005}
        )
        self.assertEqual(patched.food_expense, 0.01)
        self.assertEqual(patched.monthly_income, 4000.46)
