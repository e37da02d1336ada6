import pytest

from authcore.errors import BadRequest, Conflict, NotFound
from authcore.models.provider_account import OAuthProvider, ProviderAccount
from authcore.models.user import User
from authcore.roles import Role
from authcore.services import provider_accounts
from authcore.services.provider_accounts import (
    get_user_id_by_provider,
    link_provider_account,
    list_provider_accounts,
    set_primary_provider,
    unlink_provider_account,
)
from authcore.services.users import ProviderProfile, login_with_provider


def _primary(db, user):
    db.expire_all()
    return next(a["provider"] for a in list_provider_accounts(db, user.id) if a["is_primary"])


def _link_apple(db, user, provider_id="apple-1"):
    account = link_provider_account(db, user.id, OAuthProvider.APPLE, provider_id, user.email)
    db.commit()
    return account


def test_first_linked_account_is_primary(db, create_user):
    user = create_user()

    accounts = list_provider_accounts(db, user.id)

    assert len(accounts) == 1
    assert accounts[0]["provider"] == "google"
    assert accounts[0]["is_primary"] is True


def test_cannot_unlink_last_provider(db, create_user):
    user = create_user()

    with pytest.raises(BadRequest, match="last provider"):
        unlink_provider_account(db, user.id, OAuthProvider.GOOGLE)


def test_linking_a_second_provider_keeps_primary(db, create_user):
    user = create_user()

    _link_apple(db, user)

    assert [a["provider"] for a in list_provider_accounts(db, user.id)] == ["google", "apple"]
    assert _primary(db, user) == "google"


def test_unlinking_primary_moves_primary_to_remaining_account(db, create_user):
    user = create_user()
    _link_apple(db, user)

    unlink_provider_account(db, user.id, OAuthProvider.GOOGLE)
    db.commit()

    assert _primary(db, user) == "apple"
    assert len(list_provider_accounts(db, user.id)) == 1


def test_unlinking_secondary_keeps_primary(db, create_user):
    user = create_user()
    _link_apple(db, user)

    unlink_provider_account(db, user.id, "apple")
    db.commit()

    assert _primary(db, user) == "google"


def test_unlink_of_unlinked_provider_is_not_found(db, create_user):
    user = create_user()

    with pytest.raises(NotFound):
        unlink_provider_account(db, user.id, OAuthProvider.APPLE)


def test_user_links_each_provider_once(db, create_user):
    user = create_user()

    with pytest.raises(Conflict):
        link_provider_account(db, user.id, OAuthProvider.GOOGLE, "google-other", user.email)


def test_provider_identity_belongs_to_one_user(db, create_user):
    owner = create_user()
    other = create_user()
    _link_apple(db, owner, provider_id="apple-shared")

    with pytest.raises(Conflict):
        link_provider_account(db, other.id, OAuthProvider.APPLE, "apple-shared", other.email)

    assert get_user_id_by_provider(db, OAuthProvider.APPLE, "apple-shared") == owner.id


def test_unsupported_provider_is_rejected(db, create_user):
    user = create_user()

    with pytest.raises(BadRequest, match="Unsupported provider"):
        link_provider_account(db, user.id, "github", "gh-1", user.email)


def test_set_primary_provider(db, create_user):
    user = create_user()
    _link_apple(db, user)

    set_primary_provider(db, user.id, OAuthProvider.APPLE)
    db.commit()

    assert _primary(db, user) == "apple"


def test_set_primary_requires_linked_provider(db, create_user):
    user = create_user()

    with pytest.raises(NotFound):
        set_primary_provider(db, user.id, OAuthProvider.APPLE)


def test_login_with_known_provider_returns_same_user(db, settings):
    profile = ProviderProfile(OAuthProvider.GOOGLE, "g-42", "Repeat@Example.com", name="Repeat")
    first = login_with_provider(db, profile, settings)
    db.commit()

    second = login_with_provider(db, profile, settings)
    db.commit()

    assert first.id == second.id
    assert second.email == "repeat@example.com"
    assert db.query(ProviderAccount).count() == 1


def test_login_with_new_provider_links_by_email(db, settings):
    google = login_with_provider(db, ProviderProfile(OAuthProvider.GOOGLE, "g-1", "same@example.com"), settings)
    db.commit()

    apple = login_with_provider(
        db,
        ProviderProfile(OAuthProvider.APPLE, "a-1", "same@example.com", avatar="https://img/a.png"),
        settings,
    )
    db.commit()

    assert apple.id == google.id
    assert apple.avatar == "https://img/a.png"
    assert {a["provider"] for a in list_provider_accounts(db, apple.id)} == {"google", "apple"}


def test_login_assigns_configured_roles_and_never_demotes(db, settings):
    configured = settings.model_copy(
        update={"superadmin_email": "root@example.com", "admin_emails": "ops@example.com"}
    )

    root = login_with_provider(db, ProviderProfile(OAuthProvider.GOOGLE, "g-root", "root@example.com"), configured)
    ops = login_with_provider(db, ProviderProfile(OAuthProvider.GOOGLE, "g-ops", "OPS@example.com"), configured)
    plain = login_with_provider(db, ProviderProfile(OAuthProvider.GOOGLE, "g-plain", "plain@example.com"), configured)
    db.commit()

    assert root.role == Role.SUPERADMIN
    assert ops.role == Role.ADMIN
    assert plain.role == Role.USER

    # Promoted by hand, then logs in again without being on any list
    plain.role = Role.ADMIN
    db.commit()
    again = login_with_provider(db, ProviderProfile(OAuthProvider.GOOGLE, "g-plain", "plain@example.com"), configured)

    assert again.role == Role.ADMIN


def test_login_promotes_existing_user_added_to_admin_list(db, settings):
    profile = ProviderProfile(OAuthProvider.GOOGLE, "g-late", "late@example.com")
    user = login_with_provider(db, profile, settings)
    db.commit()
    assert user.role == Role.USER

    promoted = login_with_provider(db, profile, settings.model_copy(update={"admin_emails": "late@example.com"}))

    assert promoted.role == Role.ADMIN


def test_link_race_keeps_the_callers_pending_work(db, create_user, monkeypatch):
    owner = create_user()
    _link_apple(db, owner, provider_id="apple-raced")
    newcomer = User(email="newcomer@example.com", role=Role.USER)
    db.add(newcomer)
    db.flush()
    # The concurrent link is not visible to the pre-checks, only to the unique constraint
    monkeypatch.setattr(provider_accounts, "get_provider_account", lambda *args, **kwargs: None)

    with pytest.raises(Conflict):
        link_provider_account(db, newcomer.id, OAuthProvider.APPLE, "apple-raced", newcomer.email)

    assert db.query(User).filter(User.email == "newcomer@example.com").count() == 1
    db.commit()
    raced = db.query(ProviderAccount).filter(ProviderAccount.provider_id == "apple-raced").one()
    assert raced.user_id == owner.id
