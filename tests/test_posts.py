import io
import re
from datetime import datetime

import pytest

from app.campus.errors import AccessDenied, ErrorCode, UploadTooLarge, ValidationError
from app.campus.modules.clubs.models import ClubMember
from app.campus.modules.clubs.service import follow, get_club
from app.campus.modules.posts.models import Comment, Post, PostLike
from app.campus.modules.posts.service import (
    ImageUpload,
    add_comment,
    create_post,
    delete_post,
    feed_for,
    posts_by,
    toggle_like,
)
from app.campus.storage import LocalStorage, MediaStore

UPLOAD_URL = re.compile(r"^/uploads/[0-9a-f]{32}\.(png|jpg)$")


@pytest.fixture()
def members(db, seed):
    """Alice is a member of Chess and Carol of Ski. Bob only follows Chess."""
    db.add(ClubMember(user_id=seed.alice, club_id=seed.chess))
    db.add(ClubMember(user_id=seed.carol, club_id=seed.ski))
    db.commit()
    return seed


def test_non_member_cannot_post(db, members, ident):
    chess = get_club(db, members.chess)
    follow(db, ident(members.bob), chess)

    with pytest.raises(AccessDenied) as exc:
        create_post(db, ident(members.bob), chess, "Hi")
    assert exc.value.code is ErrorCode.NOT_MEMBER

    with pytest.raises(AccessDenied) as exc:
        create_post(db, ident(members.chess_admin), chess, "Hi")
    assert exc.value.code is ErrorCode.NOT_MEMBER

    with pytest.raises(AccessDenied) as exc:
        create_post(db, None, chess, "Hi")
    assert exc.value.code is ErrorCode.UNAUTHENTICATED


def test_member_post_reaches_followers_and_members(db, members, ident):
    chess = get_club(db, members.chess)
    follow(db, ident(members.bob), chess)
    post = create_post(db, ident(members.alice), chess, "Hello")
    db.commit()

    assert [p.id for p in feed_for(db, members.bob)] == [post.id]
    assert [p.id for p in feed_for(db, members.alice)] == [post.id]
    assert feed_for(db, members.carol) == []
    assert posts_by(db, members.alice)[0].text == "Hello"


def test_feed_is_newest_first_across_clubs(db, members, ident):
    chess, ski = get_club(db, members.chess), get_club(db, members.ski)
    db.add(ClubMember(user_id=members.bob, club_id=members.ski))
    follow(db, ident(members.bob), chess)

    first = create_post(db, ident(members.alice), chess, "one")
    second = create_post(db, ident(members.carol), ski, "two")
    third = create_post(db, ident(members.alice), chess, "three")
    db.commit()

    assert [p.id for p in feed_for(db, members.bob)] == [third.id, second.id, first.id]
    assert [p.id for p in feed_for(db, members.bob, limit=2)] == [third.id, second.id]


def test_feed_breaks_timestamp_ties_by_id(db, members):
    stamp = datetime(2024, 1, 1, 12, 0)
    first = Post(club_id=members.chess, author_user_id=members.alice, text="first", created_at=stamp)
    second = Post(club_id=members.chess, author_user_id=members.alice, text="second", created_at=stamp)
    db.add(first)
    db.flush()
    db.add(second)
    db.commit()
    assert second.id > first.id

    assert [p.id for p in feed_for(db, members.alice)] == [second.id, first.id]
    assert [p.id for p in feed_for(db, members.alice, limit=1)] == [second.id]


def test_post_text_is_validated(db, members, ident):
    chess = get_club(db, members.chess)
    with pytest.raises(ValidationError):
        create_post(db, ident(members.alice), chess, "   ")
    with pytest.raises(ValidationError):
        create_post(db, ident(members.alice), chess, "x" * 5001)


def test_delete_post_by_author_or_owning_club_admin(db, members, ident):
    chess = get_club(db, members.chess)
    post = create_post(db, ident(members.alice), chess, "mine")
    db.commit()

    with pytest.raises(AccessDenied) as exc:
        delete_post(db, ident(members.bob), post)
    assert exc.value.code is ErrorCode.WRONG_ROLE
    with pytest.raises(AccessDenied) as exc:
        delete_post(db, ident(members.ski_admin), post)
    assert exc.value.code is ErrorCode.NOT_OWNER
    with pytest.raises(AccessDenied) as exc:
        delete_post(db, None, post)
    assert exc.value.code is ErrorCode.UNAUTHENTICATED

    delete_post(db, ident(members.chess_admin), post)
    db.commit()
    assert db.query(Post).count() == 0

    post = create_post(db, ident(members.alice), chess, "again")
    delete_post(db, ident(members.alice), post)
    db.commit()
    assert db.query(Post).count() == 0


def test_comments_and_likes(db, members, ident):
    post = create_post(db, ident(members.alice), get_club(db, members.chess), "Poll")
    bob = ident(members.bob)

    comment = add_comment(db, bob, post, "  Count me in  ")
    assert comment.text == "Count me in"
    with pytest.raises(ValidationError):
        add_comment(db, bob, post, "")

    assert toggle_like(db, bob, post) is True
    assert toggle_like(db, bob, post) is False
    assert toggle_like(db, bob, post) is True
    db.commit()
    assert db.query(PostLike).filter(PostLike.post_id == post.id).count() == 1
    assert [c.text for c in db.query(Comment).filter(Comment.post_id == post.id)] == ["Count me in"]


# ---------- Media ----------
def test_media_store_saves_under_generated_name(tmp_path):
    media = MediaStore(storage=LocalStorage(root=tmp_path), max_bytes=1024)
    url = media.save_image(b"\x89PNG fake", "../../etc/My Photo.PNG", "image/png")
    assert UPLOAD_URL.match(url)
    assert (tmp_path / url.rsplit("/", 1)[1]).read_bytes() == b"\x89PNG fake"


@pytest.mark.parametrize(
    "data,filename,error",
    [
        (b"", "a.png", ValidationError),
        (b"x" * 2048, "a.png", UploadTooLarge),
        (b"x", "script.svg", ValidationError),
        (b"x", "noextension", ValidationError),
    ],
)
def test_media_store_rejects_bad_uploads(tmp_path, data, filename, error):
    media = MediaStore(storage=LocalStorage(root=tmp_path), max_bytes=1024)
    with pytest.raises(error):
        media.save_image(data, filename)
    assert list(tmp_path.iterdir()) == []


def test_post_with_image_over_http(client, db, members):
    client.login("alice@north.edu")
    r = client.post(
        "/me/posts/new",
        data={"club_id": str(members.chess), "text": "Board photo", "image": (io.BytesIO(b"jpegdata"), "board.jpg")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/clubs/{members.chess}")

    post = db.query(Post).one()
    assert post.text == "Board photo"
    assert UPLOAD_URL.match(post.image_url)

    r = client.get(post.image_url)
    assert r.status_code == 200
    assert r.data == b"jpegdata"


def test_oversized_image_is_refused_over_http(app, client, db, members):
    app.config["MAX_IMAGE_BYTES"] = 4
    client.login("alice@north.edu")
    r = client.post(
        "/me/posts/new",
        data={"club_id": str(members.chess), "text": "Big", "image": (io.BytesIO(b"too many bytes"), "big.png")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"Image too large" in r.data
    assert db.query(Post).count() == 0


def test_non_member_post_over_http_is_refused(client, db, members):
    client.login("bob@north.edu")
    r = client.post("/me/posts/new", data={"club_id": str(members.chess), "text": "Sneaky"}, follow_redirects=True)
    assert b"Only members of this club can post here." in r.data
    assert db.query(Post).count() == 0


def test_like_and_comment_over_http(client, db, members, ident):
    post = create_post(db, ident(members.alice), get_club(db, members.chess), "Hello")
    db.commit()

    client.login("bob@north.edu")
    client.post(f"/clubs/{members.chess}/posts/{post.id}/like")
    r = client.post(f"/clubs/{members.chess}/posts/{post.id}/comments", data={"text": "Nice"}, follow_redirects=True)
    assert b"Like (1)" in r.data
    assert b"Nice" in r.data
