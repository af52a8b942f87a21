from datetime import datetime, timedelta

from loguru import logger

from chatledger.db.repository import PetRepository
from chatledger.models.schemas import Pet

HUNGER_DECAY_PER_HOUR = 2
# level needed to grow into each stage
EVOLUTION_LEVELS = (("adult", 15), ("child", 8), ("baby", 3))
NEGATIVE_STAGES = ("sick", "dying", "dead")

STATUS_MESSAGES = {
    "dead": "Has passed away...",
    "dying": "Critically ill, needs care right now!",
    "sick": "Feeling sick, please look after me...",
    "eating": "Enjoying a meal...",
    "hungry": "So hungry! Log something to feed me!",
    "happy": "Full and happy!",
}


def _stage_for_level(level: int) -> str:
    for stage, min_level in EVOLUTION_LEVELS:
        if level >= min_level:
            return stage
    return "egg"


class PetService:
    """Gamification state that grows as the owner keeps logging transactions."""

    def __init__(self, pets: PetRepository):
        self.pets = pets

    def get_or_create_pet(self, owner_id: str, now: datetime | None = None) -> Pet:
        now = now or datetime.now()
        pet = self.pets.get(owner_id) or Pet(owner_id=owner_id, last_fed_at=now, updated_at=now)
        self._decay(pet, now)
        return self.pets.save(pet)

    def _decay(self, pet: Pet, now: datetime) -> None:
        if pet.stage == "dead":
            return
        hours = max((now - pet.updated_at).total_seconds() / 3600, 0)
        decay = int(hours * HUNGER_DECAY_PER_HOUR)
        hunger = max(0, min(100, pet.hunger - decay))

        if pet.health <= 0:
            pet.stage, pet.state = "dead", "idle"
        elif pet.health <= 10:
            pet.stage, pet.state = "dying", "idle"
        elif pet.health <= 30:
            pet.stage, pet.state = "sick", "idle"
        elif hunger <= 20:
            pet.state = "hungry"
            pet.health = max(0, pet.health - 1)
        elif pet.state != "happy":
            pet.state = "idle"

        if hunger > 50 and pet.health < 100 and pet.stage not in NEGATIVE_STAGES:
            pet.health = min(100, pet.health + 0.5)
        pet.hunger = hunger
        if decay:
            pet.updated_at = now

    def feed_pet(self, owner_id: str, amount: float | None = None, now: datetime | None = None) -> Pet:
        now = now or datetime.now()
        pet = self.get_or_create_pet(owner_id, now)
        if pet.stage == "dead":
            return pet

        last_day, today = pet.last_fed_at.date(), now.date()
        if today != last_day or pet.consecutive_days == 0:
            if last_day == today - timedelta(days=1):
                pet.consecutive_days += 1
            else:
                pet.consecutive_days = 1

        pet.hunger = min(100, pet.hunger + 30)
        pet.happiness = min(100, pet.happiness + 10)
        pet.state = "eating"
        pet.last_fed_at = now
        pet.total_transactions += 1

        if pet.stage in ("sick", "dying"):
            pet.health = min(100, pet.health + 20)
            if pet.stage == "sick" and pet.health > 30:
                pet.stage = _stage_for_level(pet.level)
            elif pet.stage == "dying" and pet.health > 10:
                pet.stage = "sick"

        pet.experience += int(amount // 10) if amount else 10
        while pet.experience >= pet.level * 100:
            pet.experience -= pet.level * 100
            pet.level += 1
            if pet.stage not in NEGATIVE_STAGES:
                pet.stage = _stage_for_level(pet.level)
            logger.info("Pet of {} reached level {}", owner_id, pet.level)

        return self.pets.save(pet)

    def status_message(self, pet: Pet) -> str:
        if pet.stage in NEGATIVE_STAGES:
            return STATUS_MESSAGES[pet.stage]
        return STATUS_MESSAGES.get(pet.state, "Waiting for you...")
