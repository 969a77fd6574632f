import unittest

from fleet_booking import Action, Actor, PermissionDenied, Role, ValidationError, authorize
from fleet_booking.roles import CAPABILITIES, is_allowed


class TestRoleHierarchy(unittest.TestCase):
    def test_roles_are_strictly_ordered(self) -> None:
        self.assertLess(Role.VIEWER, Role.DRIVER)
        self.assertLess(Role.DRIVER, Role.FLEET_MANAGER)
        self.assertLess(Role.FLEET_MANAGER, Role.ADMIN)

    def test_parse_accepts_header_values(self) -> None:
        self.assertIs(Role.parse("fleet_manager"), Role.FLEET_MANAGER)
        self.assertIs(Role.parse(" Admin "), Role.ADMIN)
        with self.assertRaises(ValidationError):
            Role.parse("superuser")

    def test_actor_coerces_role_names(self) -> None:
        actor = Actor("u-1", "org-a", "driver")
        self.assertIs(actor.role, Role.DRIVER)


class TestCapabilityGate(unittest.TestCase):
    def setUp(self) -> None:
        self.viewer = Actor("viewer", "org-a", Role.VIEWER)
        self.driver = Actor("driver", "org-a", Role.DRIVER)
        self.manager = Actor("manager", "org-a", Role.FLEET_MANAGER)
        self.admin = Actor("admin", "org-a", Role.ADMIN)

    def test_every_action_has_a_capability(self) -> None:
        self.assertEqual(set(CAPABILITIES), set(Action))

    def test_create_requires_driver(self) -> None:
        with self.assertRaises(PermissionDenied):
            authorize(self.viewer, Action.CREATE)
        authorize(self.driver, Action.CREATE)
        authorize(self.admin, Action.CREATE)

    def test_approve_is_a_minimum_role_check(self) -> None:
        with self.assertRaises(PermissionDenied):
            authorize(self.driver, Action.APPROVE)
        authorize(self.manager, Action.APPROVE)
        authorize(self.admin, Action.APPROVE)

    def test_ownership_does_not_grant_manager_only_actions(self) -> None:
        for action in (Action.APPROVE, Action.REJECT, Action.COMPLETE):
            with self.subTest(action=action):
                self.assertFalse(is_allowed(self.driver, action, is_owner=True))

    def test_owner_may_cancel_and_edit_regardless_of_rank(self) -> None:
        for action in (Action.CANCEL, Action.EDIT):
            with self.subTest(action=action):
                self.assertTrue(is_allowed(self.viewer, action, is_owner=True))
                self.assertFalse(is_allowed(self.driver, action, is_owner=False))
                self.assertTrue(is_allowed(self.manager, action, is_owner=False))

    def test_only_admins_retire_vehicles(self) -> None:
        with self.assertRaises(PermissionDenied):
            authorize(self.manager, Action.RETIRE_VEHICLE)
        authorize(self.admin, Action.RETIRE_VEHICLE)


if __name__ == "__main__":
    unittest.main()
