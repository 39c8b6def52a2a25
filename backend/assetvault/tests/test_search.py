import random
from datetime import datetime, timedelta

import pytest

from assetvault import models
from assetvault.errors import NotFound, ValidationError
from assetvault.models import AssetStatus, UploadChannel, UserRole, VisibilityLevel
from assetvault.search import AssetFilterEngine, AssetSearchParams, visibility_clause
from assetvault.visibility import VisibilityEngine
from .conftest import auth_headers, build_asset, create_asset, create_company, create_user, share_asset


def _seed_population(db, rng: random.Random):
    companies = [create_company(db) for _ in range(3)]
    company_choices = companies + [None]
    users = [
        create_user(db, rng.choice(list(UserRole)), rng.choice(company_choices))
        for _ in range(8)
    ]
    assets = []
    for _ in range(90):
        owner = rng.choice(users)
        asset = build_asset(
            owner,
            status=rng.choice(list(AssetStatus)),
            visibility=rng.choice(list(VisibilityLevel)),
            upload_channel=rng.choice(list(UploadChannel)),
            allowed_role=rng.choice(list(UserRole)),
            company_id=getattr(rng.choice(company_choices), "id", None),
        )
        db.add(asset)
        assets.append(asset)
    db.commit()
    for asset in assets:
        recipients = rng.sample(users, rng.randint(0, 3))
        for recipient in recipients:
            if recipient.id != asset.owner_id:
                db.add(
                    models.AssetShare(
                        asset_id=asset.id,
                        shared_by_id=asset.owner_id,
                        shared_with_id=recipient.id,
                    )
                )
    db.commit()
    return users, assets


@pytest.mark.parametrize("seed", [7, 19, 2024, 31337])
def test_pushed_down_predicate_matches_can_view(db, seed):
    rng = random.Random(seed)
    users, assets = _seed_population(db, rng)
    # viewers with no company exercise the null-company branch
    users.append(create_user(db, UserRole.SEO_SPECIALIST))
    visibility = VisibilityEngine(db)
    filter_engine = AssetFilterEngine(db, visibility)

    for viewer in users:
        expected = {a.id for a in assets if visibility.can_view(viewer, a)}
        pushed_down = {a.id for a in filter_engine.visible_query(viewer).all()}
        assert pushed_down == expected, f"seed={seed} viewer role={viewer.role}"

        page = filter_engine.search(viewer, AssetSearchParams(limit=100))
        assert page.total == len(expected)


def test_admin_has_no_visibility_clause(db):
    admin = create_user(db, UserRole.ADMIN)
    owner = create_user(db)
    for status in AssetStatus:
        create_asset(db, owner, status=status)
    assert visibility_clause(admin) is None
    page = AssetFilterEngine(db, VisibilityEngine(db)).search(admin, AssetSearchParams())
    assert page.total == len(AssetStatus)


def test_pagination_totals_reflect_visible_set(db):
    owner = create_user(db)
    viewer = create_user(db)
    for _ in range(25):
        create_asset(db, owner, status=AssetStatus.APPROVED, visibility=VisibilityLevel.PUBLIC)
    for _ in range(5):
        create_asset(db, owner, status=AssetStatus.DRAFT, visibility=VisibilityLevel.PUBLIC)
    engine = AssetFilterEngine(db, VisibilityEngine(db))

    first = engine.search(viewer, AssetSearchParams(limit=10, page=1))
    last = engine.search(viewer, AssetSearchParams(limit=10, page=3))
    assert first.total == 25
    assert first.total_pages == 3
    assert len(first.items) == 10
    assert len(last.items) == 5

    seen = set()
    for page in range(1, 4):
        seen.update(a.id for a in engine.search(viewer, AssetSearchParams(limit=10, page=page)).items)
    assert len(seen) == 25


def test_limit_is_clamped_and_page_validated(db):
    viewer = create_user(db)
    engine = AssetFilterEngine(db, VisibilityEngine(db))
    assert engine.search(viewer, AssetSearchParams(limit=1000)).limit == 100
    assert engine.search(viewer, AssetSearchParams(limit=0)).limit == 1
    with pytest.raises(ValidationError):
        engine.search(viewer, AssetSearchParams(page=0))
    with pytest.raises(ValidationError):
        engine.search(viewer, AssetSearchParams(sort_by="owner_id"))
    with pytest.raises(ValidationError):
        engine.search(viewer, AssetSearchParams(status="ARCHIVED"))


def test_uploader_scope_and_assignment_filters(db):
    specialist = create_user(db, UserRole.SEO_SPECIALIST)
    creator = create_user(db, UserRole.CONTENT_CREATOR)
    other_specialist = create_user(db, UserRole.SEO_SPECIALIST)

    mine = create_asset(db, specialist, status=AssetStatus.APPROVED, visibility=VisibilityLevel.PUBLIC)
    creator_public = create_asset(db, creator, status=AssetStatus.APPROVED, visibility=VisibilityLevel.PUBLIC)
    creator_shared = create_asset(
        db, creator, status=AssetStatus.APPROVED, visibility=VisibilityLevel.SELECTED_USERS
    )
    share_asset(db, creator_shared, specialist)
    for_specialists = create_asset(
        db,
        other_specialist,
        status=AssetStatus.APPROVED,
        visibility=VisibilityLevel.ROLE_SCOPED,
        allowed_role=UserRole.SEO_SPECIALIST,
    )
    engine = AssetFilterEngine(db, VisibilityEngine(db))

    ids = lambda page: {a.id for a in page.items}  # noqa: E731

    assert ids(engine.search(specialist, AssetSearchParams(uploader_scope="mine"))) == {mine.id}
    assert ids(engine.search(specialist, AssetSearchParams(uploader_scope="all_creators"))) == {
        creator_public.id,
        creator_shared.id,
    }
    assert ids(engine.search(specialist, AssetSearchParams(assigned_to="me"))) == {
        creator_public.id,
        creator_shared.id,
        for_specialists.id,
    }
    with pytest.raises(ValidationError):
        engine.search(specialist, AssetSearchParams(uploader_scope="everyone"))
    with pytest.raises(ValidationError):
        engine.search(specialist, AssetSearchParams(assigned_to="someone-else"))


def test_text_type_and_date_filters(db):
    owner = create_user(db)
    banner = create_asset(db, owner, title="Spring Banner", asset_type="IMAGE")
    create_asset(db, owner, title="Launch video", asset_type="VIDEO")
    old = create_asset(db, owner, title="Old banner", created_at=datetime(2020, 1, 1))
    engine = AssetFilterEngine(db, VisibilityEngine(db))

    found = engine.search(owner, AssetSearchParams(q="BANNER"))
    assert {a.id for a in found.items} == {banner.id, old.id}

    videos = engine.search(owner, AssetSearchParams(asset_type="VIDEO"))
    assert [a.title for a in videos.items] == ["Launch video"]

    recent = engine.search(owner, AssetSearchParams(date_from=datetime(2021, 1, 1)))
    assert old.id not in {a.id for a in recent.items}
    assert recent.total == 2

    with pytest.raises(ValidationError):
        engine.search(
            owner,
            AssetSearchParams(date_from=datetime(2022, 1, 1), date_to=datetime(2022, 1, 1) - timedelta(days=1)),
        )


def test_sorting_by_title(db):
    owner = create_user(db)
    for title in ("bravo", "alpha", "charlie"):
        create_asset(db, owner, title=title)
    engine = AssetFilterEngine(db, VisibilityEngine(db))
    page = engine.search(owner, AssetSearchParams(sort_by="title", sort_order="asc"))
    assert [a.title for a in page.items] == ["alpha", "bravo", "charlie"]


def test_get_visible_hides_existence(db):
    owner = create_user(db)
    stranger = create_user(db)
    asset = create_asset(db, owner)
    engine = AssetFilterEngine(db, VisibilityEngine(db))
    assert engine.get_visible(owner, asset.id).id == asset.id
    with pytest.raises(NotFound):
        engine.get_visible(stranger, asset.id)


def test_search_endpoint(client, db):
    company = create_company(db)
    owner = create_user(db, company=company)
    colleague = create_user(db, company=company)
    visible = create_asset(
        db, owner, status=AssetStatus.APPROVED, visibility=VisibilityLevel.COMPANY_SCOPED
    )
    create_asset(db, owner, status=AssetStatus.DRAFT)

    resp = client.get("/api/assets", headers=auth_headers(colleague), params={"limit": 5})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["total"] == 1
    assert body["total_pages"] == 1
    assert [item["id"] for item in body["items"]] == [str(visible.id)]

    bad = client.get("/api/assets", headers=auth_headers(colleague), params={"sort_order": "sideways"})
    assert bad.status_code == 400
    assert bad.json()["field"] == "sort_order"

    by_status = client.get(
        "/api/assets", headers=auth_headers(owner), params={"status": "DRAFT"}
    )
    assert by_status.json()["total"] == 1
