"""Challenge pools: the daily prompts shown for each category.

Draw policy: uniform random among challenges not yet drawn in this run.
Once a category's pool is exhausted it starts over. FamilyRequest
descriptions use "{target}" for the character being helped.
"""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path

from bunker_actions.models import Category, Challenge

logger = logging.getLogger(__name__)

_E, _D, _F = Category.EXPLORATION, Category.DILEMMA, Category.FAMILY_REQUEST

_DEFAULTS: list[tuple[Category, str, str]] = [
    (_E, "Locked Door",
     "You've found a heavy locked door in the lower bunker level. It might lead to a supply cache. How do you get it open?"),
    (_E, "Collapsed Tunnel",
     "A section of the maintenance tunnel has caved in, blocking access to the water pump. How do you clear the debris?"),
    (_E, "Flooded Room",
     "The storage room is ankle-deep in murky water from a burst pipe. Important supplies are on the shelves. How do you retrieve them safely?"),
    (_E, "Jammed Air Vent",
     "The main ventilation shaft is clogged with dust and debris. Air quality is dropping. How do you fix the airflow?"),
    (_E, "Broken Generator",
     "The backup generator sputtered and died. Without it, you lose lighting and the water pump. How do you get it running again?"),
    (_E, "Contaminated Water Tank",
     "The main water tank has a strange discoloration. It might be contaminated. How do you handle the water situation?"),
    (_E, "Strange Noises Above",
     "You hear scratching and thumping sounds from the ceiling. Something is above the bunker. How do you investigate?"),
    (_E, "Rusted Hatch",
     "The emergency exit hatch is rusted shut. You might need it as an escape route. How do you try to free it?"),
    (_E, "Flickering Lights",
     "The electrical wiring is sparking in the main corridor. It's a fire hazard and could short out the whole system. How do you deal with it?"),
    (_E, "Rat Infestation",
     "Rats have gotten into the food storage area. They're chewing through packaging and contaminating supplies. How do you handle the pest problem?"),
    (_E, "Mysterious Radio Signal",
     "The old radio picked up a faint transmission. It could be survivors, military, or a trap. How do you respond?"),
    (_E, "Cracked Wall",
     "A large crack has appeared in the bunker wall. You can feel cold air seeping through. Is the structural integrity at risk? What do you do?"),
    (_E, "Medicine Cabinet",
     "You found a sealed medicine cabinet in an unused room, but it has a combination lock. How do you access it?"),
    (_E, "Blocked Drain",
     "The bunker's waste drain is completely blocked. Sewage is starting to back up. How do you unclog it before it becomes a health crisis?"),
    (_E, "Solar Panel Access",
     "There's a solar panel array on the surface that could supplement power, but going outside is dangerous. How do you attempt to connect it?"),
    (_D, "Water Rationing",
     "Water supplies are running critically low. You can ration equally (everyone suffers a little) or prioritize the children (adults go thirsty). What do you decide?"),
    (_D, "Stranger at the Door",
     "Someone is banging on the bunker door begging for help. They claim to be injured. Letting them in risks your family's safety. Ignoring them means they might die. What do you do?"),
    (_D, "Stolen Supplies",
     "You discover that food has been disappearing. Circumstantial evidence points to a family member sneaking extra rations at night. How do you handle this?"),
    (_D, "Power Rationing",
     "The generator fuel is almost gone. You can keep the lights on (morale), run the water pump (hydration), or power the radio (information). You can only pick one. Which do you choose?"),
    (_D, "Sick Outsider",
     "A wounded stranger managed to get inside. They're clearly infected with something. Using your limited medicine on them means less for your family. What do you do?"),
    (_D, "The Last Antibiotics",
     "Two family members are getting sick. You only have enough antibiotics for one. Who gets the medicine?"),
    (_D, "Risky Trade",
     "A passing trader offers a large amount of food in exchange for your only weapon. Without the weapon you're defenseless, but without food you'll starve. What's your call?"),
    (_D, "Evacuation Rumor",
     "A radio broadcast claims evacuation helicopters are coming to a location 2 days' walk away. It could be real, or it could be a raider trap. Do you stay in the bunker or risk the journey?"),
    (_D, "The Confession",
     "A family member confesses they've been secretly communicating with outsiders via radio, potentially revealing your location. They say they were trying to find help. How do you respond?"),
    (_D, "Contaminated Food",
     "Half of your remaining food supply may have been exposed to contamination. Eating it risks sickness. Throwing it away means going hungry. What's the plan?"),
    (_F, "High Fever",
     "{target} has developed a high fever and is shivering uncontrollably. They need care and possibly medicine. How do you help them?"),
    (_F, "Nightmares",
     "{target} hasn't been sleeping. They keep waking up screaming from nightmares about the outside world. Their sanity is slipping. How do you comfort them?"),
    (_F, "Refusing to Eat",
     "{target} has stopped eating. They say they'd rather the others have their share. They're getting weaker by the day. How do you convince them to eat?"),
    (_F, "Panic Attack",
     "{target} is having a severe panic attack. They're hyperventilating and saying the walls are closing in. How do you calm them down?"),
    (_F, "Infected Wound",
     "{target} has a wound that's turning red and swollen. It looks infected. Without treatment it could get much worse. What do you do?"),
    (_F, "Homesick and Hopeless",
     "{target} has completely lost hope. They keep talking about how pointless it is to keep trying. Their despair is affecting everyone. How do you lift their spirits?"),
    (_F, "Family Conflict",
     "{target} got into a heated argument with another family member. Tensions are high and they're refusing to speak to each other. How do you mediate?"),
    (_F, "Dehydration",
     "{target} is showing signs of severe dehydration: dry lips, dizziness, confusion. They need water urgently, but supplies are limited. How do you handle this?"),
    (_F, "Broken Bone",
     "{target} fell and may have broken their arm. They're in significant pain. You have limited medical supplies. How do you treat the injury?"),
    (_F, "Wants to Leave",
     "{target} wants to leave the bunker alone to search for help. It's dangerous outside, but they're determined. How do you respond to their plan?"),
]

DEFAULT_CHALLENGES: list[Challenge] = [
    Challenge(category=category, title=title, description=description)
    for category, title, description in _DEFAULTS
]


class ChallengePool:
    def __init__(self, challenges: list[Challenge] | None = None, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._by_category: dict[Category, list[Challenge]] = {c: [] for c in Category}
        for challenge in DEFAULT_CHALLENGES if challenges is None else challenges:
            self._by_category[challenge.category].append(challenge)
        self._drawn: dict[Category, set[str]] = {c: set() for c in Category}

    @classmethod
    def from_file(cls, path: Path, rng: random.Random | None = None) -> "ChallengePool":
        """Load a JSON list of {"category", "title", "description"} objects."""
        data = json.loads(path.read_text())
        return cls([Challenge.model_validate(c) for c in data], rng=rng)

    def challenges(self, category: Category) -> list[Challenge]:
        return list(self._by_category[category])

    def draw(self, category: Category) -> Challenge | None:
        pool = self._by_category[category]
        if not pool:
            logger.warning("Challenge pool for %s is empty", category.value)
            return None
        fresh = [c for c in pool if c.title not in self._drawn[category]]
        if not fresh:
            logger.debug("challenge pool for %s exhausted, starting over", category.value)
            self._drawn[category].clear()
            fresh = pool
        challenge = self._rng.choice(fresh)
        self._drawn[category].add(challenge.title)
        return challenge

    def reset(self) -> None:
        for drawn in self._drawn.values():
            drawn.clear()
