import asyncio
import os
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from app.db import build_engine
from app.models import Club, Player
from app.routers.auth import create_access_token
from app.services.badges import sync_badge_catalog

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required")

engine = build_engine(DATABASE_URL)
Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def main():
    async with Session() as s:
        await sync_badge_catalog(s)

        existing_clubs = {
            x.id for x in (await s.execute(select(Club))).scalars().all()
        }
        for cid, name in [("demo-club", "Demo Tennis Club")]:
            if cid not in existing_clubs:
                s.add(Club(id=cid, name=name))
        await s.commit()

        existing_players = {
            x.id for x in (await s.execute(select(Player))).scalars().all()
        }
        players = [
            Player(id="demo-admin", name="Club Captain", club_id="demo-club", is_admin=True),
            Player(id="tennis-alex-ruiz", name="Alex Ruiz", club_id="demo-club"),
            Player(id="tennis-bella-fernandez", name="Bella Fernandez", club_id="demo-club"),
            Player(id="tennis-carlos-mendez", name="Carlos Mendez", club_id="demo-club"),
            Player(id="tennis-diana-soto", name="Diana Soto", club_id="demo-club"),
        ]
        for p in players:
            if p.id not in existing_players:
                s.add(p)
        await s.commit()

        # Development bearer tokens, valid for the configured JWT lifetime.
        if os.getenv("JWT_SECRET"):
            seeded = (
                await s.execute(select(Player).where(Player.club_id == "demo-club"))
            ).scalars().all()
            for p in sorted(seeded, key=lambda p: p.id):
                print(f"{p.id}\t{create_access_token(p)}")
    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(main())
