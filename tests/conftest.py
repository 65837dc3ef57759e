"""Shared fixtures."""

import pytest

from tradeloop.services.accounts import account_from_key

from tests.fakes import MAIN_KEY, SUB_KEY


@pytest.fixture
def main_account():
    return account_from_key(MAIN_KEY)


@pytest.fixture
def sub_account():
    return account_from_key(SUB_KEY)
