"""
Reflect module

Reflection mechanism:
1. monitor accumulated observation importance, trigger when the threshold is
   reached or when too much game time passed since the last reflection
2. generate high-level reflection questions from recent important observations
3. retrieve supporting memories for every question
4. synthesize an insight grounded in that evidence
5. store insights back into the memory store as reflection records
6. when enough reflections of one level pile up, synthesize a meta-reflection
   one level higher

Insights are computed asynchronously and applied to the store in one step
(apply), so a reflection never shows up half-written between ticks.
Generation failures fall back to templated questions and answers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import re

from loguru import logger

from mazemind.agent.generation import synthesize_within
from mazemind.agent.memory.memory_record import MemoryRecord
from mazemind.agent.memory.memory_stream import MemoryStore
from mazemind.agent.memory.retrieve import RetrievalEngine
from mazemind.errors import ConfigurationError, GenerationTimeout

TAG = __name__

QUESTION_SYSTEM_PROMPT = (
    "You are the inner voice of an agent trying to survive in a maze. "
    "Ask deep, specific questions. Return only the questions."
)
INSIGHT_SYSTEM_PROMPT = (
    "You are the inner voice of an agent trying to survive in a maze. "
    "You extract insights strictly from the memories you are given."
)

TEMPLATE_QUESTIONS = [
    "What has {agent} learned about where food, water and energy can be found in the maze?",
    "How are {agent}'s survival needs changing, and which one is becoming the most urgent?",
    "Which other agents has {agent} encountered, and can they be trusted?",
    "Which parts of the maze has {agent} already explored, and what did they contain?",
    "What strategy should {agent} follow to reach the exit alive?",
]

HIGH_IMPORTANCE_KEYWORDS = [
    "important", "key", "critical", "essential", "significant",
    "danger", "urgent", "exit", "survival", "always", "never",
]
MEDIUM_IMPORTANCE_KEYWORDS = [
    "tendency", "trend", "pattern", "often", "usually",
    "seems", "likely", "possible",
]

_QUESTION_LINE = re.compile(r'^\s*QUESTION[\s_-]*\d*\s*[:.)-]\s*(.+)$', re.IGNORECASE)
_NUMBERED_LINE = re.compile(r'^\s*\(?\d+\s*[.):-]\s*(.+)$')
_BULLET_LINE = re.compile(r'^\s*[-*•]\s*(.+)$')


def _question_candidates(lines: List[str]) -> List[str]:
    marked = [m.group(1) for m in map(_QUESTION_LINE.match, lines) if m]
    if marked:
        return marked

    candidates = []
    for line in lines:
        match = _NUMBERED_LINE.match(line) or _BULLET_LINE.match(line)
        if match:
            candidates.append(match.group(1))
        elif line.endswith("?"):
            candidates.append(line)
    return candidates


def parse_questions(text: Any, limit: int) -> List[str]:
    """
    extract questions from a generation response

    When any 'QUESTION_n: ...' line is present only those lines count.
    Otherwise numbered or bulleted lines and plain lines ending in '?' are
    accepted, so a chat preamble is never taken for a question. Lines of
    10 characters or fewer are dropped. Never raises; returns [] when nothing
    usable is found.
    """
    if not isinstance(text, str) or limit <= 0:
        return []

    lines = [raw.strip() for raw in text.splitlines() if raw.strip()]
    questions: List[str] = []
    for candidate in _question_candidates(lines):
        line = candidate.strip()
        if len(line) <= 10 or line in questions:
            continue
        questions.append(line)
        if len(questions) >= limit:
            break

    return questions


def parse_insight(text: Any, meta: bool = False) -> Optional[str]:
    """
    extract the 'INSIGHT:' (or 'META-INSIGHT:') field

    Everything after the marker is the answer, whitespace collapsed.
    Returns None when the marker is missing or empty.
    """
    if not isinstance(text, str):
        return None

    marker = r'META[\s_-]*INSIGHT' if meta else r'(?:META[\s_-]*)?INSIGHT'
    match = re.search(rf'{marker}\s*:\s*(.+)', text, re.IGNORECASE | re.DOTALL)
    if not match:
        return None

    answer = " ".join(match.group(1).split())
    return answer or None


def assess_insight_importance(insight: str) -> int:
    """reflection insights score 7-9 depending on wording"""
    base_importance = 7
    insight_lower = insight.lower()

    if any(kw in insight_lower for kw in HIGH_IMPORTANCE_KEYWORDS):
        return base_importance + 2
    if any(kw in insight_lower for kw in MEDIUM_IMPORTANCE_KEYWORDS):
        return base_importance + 1
    return base_importance


@dataclass
class Insight:
    """a synthesized reflection that has not been stored yet"""

    content: str
    question: str
    importance: int
    citations: List[str]
    level: int = 1
    templated: bool = False


@dataclass
class ReflectionNode:
    """
    one reflection in the flat arena

    parent_ids are the records the reflection cites (observations for level
    1, lower-level reflections above that); child_ids are the higher-level
    reflections that consumed it.
    """

    node_id: str
    level: int
    question: str
    content: str
    created: float
    parent_ids: List[str] = field(default_factory=list)
    child_ids: List[str] = field(default_factory=list)
    consumed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'level': self.level,
            'question': self.question,
            'content': self.content,
            'created': self.created,
            'parent_ids': list(self.parent_ids),
            'child_ids': list(self.child_ids),
            'consumed': self.consumed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReflectionNode':
        return cls(**data)


class ReflectionArena:
    """flat list of reflection nodes linked by id"""

    def __init__(self):
        self._nodes: Dict[str, ReflectionNode] = {}

    def add(self, node: ReflectionNode):
        self._nodes[node.node_id] = node
        # a node can only cite nodes that already exist, so links stay acyclic
        for parent_id in node.parent_ids:
            parent = self._nodes.get(parent_id)
            if parent is not None and parent.level < node.level:
                parent.child_ids.append(node.node_id)
                parent.consumed = True

    def get(self, node_id: str) -> Optional[ReflectionNode]:
        return self._nodes.get(node_id)

    def nodes_at_level(self, level: int) -> List[ReflectionNode]:
        return [n for n in self._nodes.values() if n.level == level]

    def unconsumed(self, level: int) -> List[ReflectionNode]:
        return [n for n in self._nodes.values() if n.level == level and not n.consumed]

    @property
    def depth(self) -> int:
        return max((n.level for n in self._nodes.values()), default=0)

    def __len__(self) -> int:
        return len(self._nodes)

    def to_dict(self) -> Dict[str, Any]:
        return {'nodes': [n.to_dict() for n in self._nodes.values()]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReflectionArena':
        arena = cls()
        for node_data in data.get('nodes', []):
            node = ReflectionNode.from_dict(node_data)
            arena._nodes[node.node_id] = node
        return arena


class ReflectionEngine:
    """
    reflection engine - extract high-level insights from experiences

    Attaches itself to the store: every observation added counts towards the
    trigger. When the trigger fires, reflection_due is set and the owner
    schedules reflect() + apply().
    """

    def __init__(
        self,
        store: MemoryStore,
        retriever: RetrievalEngine,
        generator=None,
        agent_name: str = "agent",
        enabled: bool = True,
        threshold: float = 150,
        fallback_interval_hours: float = 2.0,
        recent_window: int = 100,
        importance_floor: float = 5,
        questions_per_reflection: int = 3,
        evidence_per_question: int = 15,
        reflections_per_meta: int = 5,
        max_depth: int = 3,
        temperature: float = 0.7,
        request_timeout: Optional[float] = None,
    ):
        """
        initialize reflection engine

        Args:
            store: memory store the insights are written to
            retriever: retrieval engine used to gather evidence
            generator: generation service (None = templates only)
            agent_name: name used in prompts
            enabled: whether reflection triggers at all
            threshold: accumulated observation importance that triggers reflection
            fallback_interval_hours: game hours after which reflection triggers anyway
            recent_window: number of recent observations considered
            importance_floor: minimum importance of considered observations
            questions_per_reflection: questions per pass (1-5)
            evidence_per_question: supporting records per question (10-20)
            reflections_per_meta: unconsumed reflections that trigger a meta-reflection
            max_depth: highest reflection level
            request_timeout: seconds allowed for each generation call (None = unbounded)
        """
        if threshold <= 0:
            raise ConfigurationError(f"reflection threshold must be positive, got {threshold}")
        if fallback_interval_hours <= 0:
            raise ConfigurationError("fallback_interval_hours must be positive")
        if not 1 <= questions_per_reflection <= 5:
            raise ConfigurationError("questions_per_reflection must be within [1, 5]")
        if not 10 <= evidence_per_question <= 20:
            raise ConfigurationError("evidence_per_question must be within [10, 20]")
        if reflections_per_meta < 2:
            raise ConfigurationError("reflections_per_meta must be at least 2")
        if max_depth < 1:
            raise ConfigurationError("max_depth must be at least 1")

        self.store = store
        self.retriever = retriever
        self.generator = generator
        self.agent_name = agent_name
        self.enabled = enabled
        self.threshold = threshold
        self.fallback_interval = fallback_interval_hours * 3600
        self.recent_window = recent_window
        self.importance_floor = importance_floor
        self.questions_per_reflection = questions_per_reflection
        self.evidence_per_question = evidence_per_question
        self.reflections_per_meta = reflections_per_meta
        self.max_depth = max_depth
        self.temperature = temperature
        self.request_timeout = request_timeout

        # reflection state
        self.importance_sum: float = 0
        self.last_reflection_time: Optional[float] = None
        self.reflection_due = False
        self.arena = ReflectionArena()

        self.stats = {
            'importance_triggers': 0,
            'time_triggers': 0,
            'passes': 0,
            'insights': 0,
            'meta_insights': 0,
            'template_fallbacks': 0,
            'timeouts': 0,
        }

        store.add_listener(self._on_record_added)

        logger.bind(tag=TAG).info(
            f"ReflectionEngine initialized: threshold={threshold}, "
            f"fallback_interval={fallback_interval_hours}h, enabled={enabled}"
        )

    # ---------------------------------------------------------------- trigger

    def _on_record_added(self, record: MemoryRecord):
        if self.observe(record, record.created):
            self.reflection_due = True

    def observe(self, record: MemoryRecord, now: float) -> bool:
        """count an observation's importance; True when reflection triggers"""
        if record.kind != "observation":
            return False
        return self.add_importance(record.importance, now)

    def add_importance(self, importance: float, now: float) -> bool:
        """add to accumulated importance and evaluate the trigger"""
        self.importance_sum += importance
        return self.check(now)

    def should_reflect(self, now: float) -> Optional[str]:
        """trigger reason ('importance' or 'time'), or None"""
        if not self.enabled:
            return None
        if self.last_reflection_time is None:
            self.last_reflection_time = now
        if self.importance_sum >= self.threshold:
            return "importance"
        if now - self.last_reflection_time > self.fallback_interval:
            return "time"
        return None

    def check(self, now: float) -> bool:
        """
        evaluate the trigger; on trigger reset the sum to exactly 0 and restart
        the fallback timer
        """
        reason = self.should_reflect(now)
        if reason is None:
            return False

        logger.bind(tag=TAG).info(
            f"Reflection triggered by {reason}: importance_sum={self.importance_sum}, "
            f"threshold={self.threshold}"
        )

        self.stats[f'{reason}_triggers'] += 1
        self.importance_sum = 0
        self.last_reflection_time = now
        self.reflection_due = True
        return True

    # ------------------------------------------------------------ reflection

    def select_recent(self) -> List[MemoryRecord]:
        """most recent observations at or above the importance floor"""
        observations = self.store.recent(self.recent_window, kind="observation")
        return [r for r in observations if r.importance >= self.importance_floor]

    async def reflect(self, now: float, use_generator: bool = True) -> List[Insight]:
        """
        run a reflection pass and return the insights (not stored yet)

        Args:
            now: game time
            use_generator: False forces templated questions and answers
        """
        recent = self.select_recent()
        if not recent:
            logger.bind(tag=TAG).info("no important observations to reflect on")
            return []

        generator = self.generator if use_generator else None
        questions = await self.generate_questions(recent, generator)

        insights = []
        for question in questions:
            evidence = await self.gather_evidence(question, recent, now)
            insights.append(await self.synthesize_insight(question, evidence, generator))

        logger.bind(tag=TAG).info(f"Generated {len(insights)} insights from {len(questions)} questions")
        return insights

    async def reflect_on(self, topic: str, now: float, use_generator: bool = True) -> List[Insight]:
        """ad-hoc reflection on a single question"""
        recent = self.select_recent()
        evidence = await self.gather_evidence(topic, recent, now)
        generator = self.generator if use_generator else None
        return [await self.synthesize_insight(topic, evidence, generator)]

    async def _synthesize(self, generator, prompt: str, **kwargs) -> str:
        try:
            return await synthesize_within(generator, prompt, timeout=self.request_timeout, **kwargs)
        except GenerationTimeout:
            self.stats['timeouts'] += 1
            raise

    async def generate_questions(self, recent: List[MemoryRecord], generator=None) -> List[str]:
        n = self.questions_per_reflection
        if generator is not None:
            prompt = self._build_question_prompt(recent, n)
            try:
                response = await self._synthesize(
                    generator,
                    prompt,
                    system_prompt=QUESTION_SYSTEM_PROMPT,
                    max_tokens=200,
                    temperature=self.temperature,
                )
                questions = parse_questions(response, n)
                if questions:
                    logger.bind(tag=TAG).info(f"Generated {len(questions)} reflection questions")
                    return questions
                logger.bind(tag=TAG).warning("generation returned no valid questions, falling back to template")
            except Exception as e:
                logger.bind(tag=TAG).warning(f"question generation failed: {e}, falling back to template")

        self.stats['template_fallbacks'] += 1
        return [q.format(agent=self.agent_name) for q in TEMPLATE_QUESTIONS[:n]]

    async def gather_evidence(self, question: str, recent: List[MemoryRecord], now: float) -> List[MemoryRecord]:
        """supporting records for a question; the recent selection when retrieval finds nothing"""
        results = await self.retriever.retrieve(question, k=self.evidence_per_question, current_time=now)
        evidence = [result.record for result in results]
        if not evidence:
            evidence = sorted(recent, key=lambda r: r.importance, reverse=True)[:self.evidence_per_question]
        return evidence

    async def synthesize_insight(
        self,
        question: str,
        evidence: List[MemoryRecord],
        generator=None,
        level: int = 1,
    ) -> Insight:
        citations = [r.record_id for r in evidence]
        meta = level > 1

        if generator is not None:
            prompt = self._build_insight_prompt(question, evidence, meta)
            try:
                response = await self._synthesize(
                    generator,
                    prompt,
                    system_prompt=INSIGHT_SYSTEM_PROMPT,
                    max_tokens=300,
                    temperature=self.temperature,
                )
                answer = parse_insight(response, meta=meta)
                if answer:
                    return Insight(
                        content=answer,
                        question=question,
                        importance=assess_insight_importance(answer),
                        citations=citations,
                        level=level,
                    )
                logger.bind(tag=TAG).warning(f"no insight field in response for '{question[:40]}', using template")
            except Exception as e:
                logger.bind(tag=TAG).warning(f"insight synthesis failed: {e}, using template")

        self.stats['template_fallbacks'] += 1
        answer = self._template_answer(question, evidence, meta)
        return Insight(
            content=answer,
            question=question,
            importance=assess_insight_importance(answer),
            citations=citations,
            level=level,
            templated=True,
        )

    def _template_answer(self, question: str, evidence: List[MemoryRecord], meta: bool) -> str:
        if not evidence:
            return f"{self.agent_name} has no clear evidence yet about: {question}"
        top = max(evidence, key=lambda r: r.importance)
        if meta:
            return (
                f"Across {len(evidence)} earlier reflections a pattern emerges for {self.agent_name}. "
                f"The most significant one is: {top.content}"
            )
        return (
            f"{self.agent_name} has {len(evidence)} memories bearing on this question. "
            f"The most significant is: {top.content}"
        )

    def _build_question_prompt(self, recent: List[MemoryRecord], n: int) -> str:
        lines = [f"- [importance {r.importance}] {r.content}" for r in recent[:20]]
        memories_text = "\n".join(lines) if lines else "(no memory)"
        return f"""
{self.agent_name} is trying to survive in a maze and has recently experienced:

{memories_text}

Based on these experiences, write {n} high-level questions that would help
{self.agent_name} understand its situation (resources, threats, other agents,
progress towards the exit).

Answer with exactly {n} lines in the form:
QUESTION_1: <question>
QUESTION_2: <question>
"""

    def _build_insight_prompt(self, question: str, evidence: List[MemoryRecord], meta: bool) -> str:
        lines = [f"{i}. [importance {r.importance}] {r.content}" for i, r in enumerate(evidence, 1)]
        memories_section = "\n".join(lines) if lines else "(no relevant memories)"
        field_name = "META-INSIGHT" if meta else "INSIGHT"
        return f"""
Question: {question}

Memories of {self.agent_name}:
{memories_section}

Using only these memories, answer in 2-3 sentences.
Reply in the form:
{field_name}: <answer>
"""

    # -------------------------------------------------------- meta-reflection

    def pending_meta_level(self) -> Optional[int]:
        """lowest level with enough unconsumed reflections to build a meta-reflection"""
        for level in range(1, self.max_depth):
            if len(self.arena.unconsumed(level)) >= self.reflections_per_meta:
                return level
        return None

    async def meta_reflect(self, level: int, use_generator: bool = True) -> List[Insight]:
        """synthesize a level+1 reflection from the unconsumed reflections at level"""
        nodes = self.arena.unconsumed(level)[:self.reflections_per_meta]
        if len(nodes) < self.reflections_per_meta:
            return []
        sources = [self.store.get(n.node_id) for n in nodes]
        evidence = [r for r in sources if r is not None]

        # evicted reflections are still cited through the arena
        if len(evidence) < len(nodes):
            evidence = [
                MemoryRecord(
                    record_id=n.node_id, content=n.content, created=n.created,
                    last_accessed=n.created, importance=7, kind="reflection", level=n.level,
                )
                for n in nodes
            ]

        question = f"What overall pattern connects {self.agent_name}'s recent level-{level} reflections?"
        generator = self.generator if use_generator else None
        insight = await self.synthesize_insight(question, evidence, generator, level=level + 1)
        return [insight]

    # ------------------------------------------------------------------ apply

    def apply(self, insights: List[Insight], now: float) -> List[MemoryRecord]:
        """store insights as reflection records and link them in the arena"""
        stored = []
        for insight in insights:
            importance = max(7, min(9, insight.importance))
            record = self.store.add_reflection(
                insight.content,
                importance,
                citations=insight.citations,
                level=insight.level,
                metadata={'question': insight.question, 'templated': insight.templated},
            )
            self.arena.add(ReflectionNode(
                node_id=record.record_id,
                level=insight.level,
                question=insight.question,
                content=insight.content,
                created=record.created,
                parent_ids=list(insight.citations),
            ))
            if insight.level > 1:
                self.stats['meta_insights'] += 1
            else:
                self.stats['insights'] += 1
            stored.append(record)

        if stored:
            self.stats['passes'] += 1
            logger.bind(tag=TAG).info(f"stored {len(stored)} reflections at {now:.0f}s")
        return stored

    async def run(self, now: float) -> List[MemoryRecord]:
        """full reflection pass including any meta-reflections it enables"""
        self.reflection_due = False
        stored = self.apply(await self.reflect(now), now)
        level = self.pending_meta_level()
        while level is not None:
            meta = await self.meta_reflect(level)
            if not meta:
                break
            stored.extend(self.apply(meta, now))
            level = self.pending_meta_level()
        return stored

    # ------------------------------------------------------------- inspection

    def get_statistics(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'importance_sum': self.importance_sum,
            'threshold': self.threshold,
            'last_reflection_time': self.last_reflection_time,
            'arena_size': len(self.arena),
            'arena_depth': self.arena.depth,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'importance_sum': self.importance_sum,
            'last_reflection_time': self.last_reflection_time,
            'arena': self.arena.to_dict(),
            'stats': dict(self.stats),
        }

    def load_dict(self, data: Dict[str, Any]):
        self.importance_sum = data.get('importance_sum', 0)
        self.last_reflection_time = data.get('last_reflection_time')
        self.arena = ReflectionArena.from_dict(data.get('arena', {}))
        self.stats.update(data.get('stats', {}))
