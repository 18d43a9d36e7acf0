"""Database seeder: users, articles and already-moderated comments.

Prints a bearer token per user so the comment endpoints can be exercised
right away, e.g.::

    python -m scripts.seed --small
    curl -H "Authorization: Bearer <token>" ...
"""
import asyncio
import argparse
import random
import time
from datetime import datetime, timezone, timedelta

from article_comments.auth import create_access_token
from article_comments.classifier import Verdict, classify, parse_banned_keywords
from article_comments.config import settings
from article_comments.database import engine, async_session, Base
from article_comments.models import Article, Comment, CommentStatus, User

PHRASES = [
    "Great write-up, thanks!",
    "I disagree with the second point.",
    "Could you share the benchmark code?",
    "This looks like spam to me",
    "Clear and concise explanation.",
    "Bookmarking this for later.",
]


async def seed(small: bool = False):
    num_users = 3 if small else 20
    num_articles = 5 if small else 200
    comments_per_article = 3 if small else 15
    banned = parse_banned_keywords(settings.BANNED_KEYWORDS)

    print(f"Seeding: {num_users} users, {num_articles} articles, "
          f"{num_articles * comments_per_article} comments")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        users = [
            User(username=f"user_{i:03d}", email=f"user_{i:03d}@example.com")
            for i in range(num_users)
        ]
        session.add_all(users)
        await session.flush()

        now = datetime.now(timezone.utc)
        for i in range(num_articles):
            article = Article(
                title=f"Article {i}",
                body=f"Body of article {i}.",
                user_id=random.choice(users).id,
                created_at=now - timedelta(days=random.randint(0, 365)),
            )
            session.add(article)
            await session.flush()

            for j in range(comments_per_article):
                content = random.choice(PHRASES)
                # Seeded comments skip the queue, so resolve them here.
                status = (
                    CommentStatus.REJECTED
                    if classify(content, banned) is Verdict.REJECT
                    else CommentStatus.PUBLISHED
                )
                session.add(Comment(
                    article_id=article.id,
                    user_id=random.choice(users).id,
                    content=content,
                    status=status,
                    created_at=article.created_at + timedelta(minutes=j + 1),
                ))
        await session.commit()

    print(f"Done in {time.perf_counter() - start:.2f}s")
    for user in users:
        print(f"  {user.username}: {create_access_token(user.id)}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the comments database")
    parser.add_argument("--small", action="store_true", help="Seed a small dataset")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))
