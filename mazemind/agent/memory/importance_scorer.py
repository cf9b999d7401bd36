"""
ImportanceScorer - importance scorer

Estimate the importance of an observation (1-10 points) with rules, for
observations the world hands over without a score.
"""

import re

from loguru import logger

TAG = __name__


class ImportanceScorer:
    """importance scorer"""

    def __init__(self):
        # keyword weights (rule-based scoring)
        self.keyword_weights = {
            # survival threats (high importance)
            'starving': 9, 'dehydrated': 9, 'exhausted': 8, 'collapse': 9,
            'dying': 10, 'trapped': 8, 'dead end': 6, 'danger': 8,
            'hungry': 7, 'thirsty': 7, 'tired': 6, 'panic': 8,

            # resources (medium-high importance)
            'food': 6, 'water': 6, 'energy': 6, 'ration': 6,
            'found': 6, 'consumed': 6, 'took': 6, 'stole': 8,

            # exit and exploration
            'exit': 9, 'escape': 8, 'unexplored': 5, 'corridor': 3,
            'junction': 4, 'wall': 2,

            # social
            'helped': 7, 'attacked': 9, 'met': 6, 'agent': 5,
            'shared': 7, 'competed': 7, 'argued': 6,

            # routine (low importance)
            'walked': 2, 'waited': 2, 'moved': 2, 'nothing': 1,
        }

        # special patterns (regular expressions)
        self.special_patterns = [
            (r'\bfirst time\b', 8),  # first experience
            (r'\b(never|always)\b', 7),  # absolute statements
            (r'\b(plan|intend|decide)d?\b', 6),  # intention
            (r'\b(must|urgent|critical)\b', 8),  # explicit importance
            (r'\b(why|how)\b', 5),  # question
        ]

    def score(self, content: str, kind: str = "observation") -> int:
        """
        evaluate memory importance

        Args:
            content: memory content
            kind: memory kind (observation/reflection/plan)

        Returns:
            importance score (1-10)
        """
        text = content.lower()

        # base score
        base_score = 5
        if kind == "reflection":
            base_score = 7

        # check keywords
        max_keyword_score = 0
        for keyword, weight in self.keyword_weights.items():
            if keyword in text:
                max_keyword_score = max(max_keyword_score, weight)

        # check special patterns
        max_pattern_score = 0
        for pattern, weight in self.special_patterns:
            if re.search(pattern, text):
                max_pattern_score = max(max_pattern_score, weight)

        # routine content lowers the base instead of raising it
        if max_keyword_score and max_keyword_score < base_score and not max_pattern_score:
            final_score = max_keyword_score
        else:
            final_score = max(base_score, max_keyword_score, max_pattern_score)

        # very short content lowers importance
        if len(text) < 5:
            final_score = min(final_score, 3)
        elif len(text) < 10:
            final_score = min(final_score, 5)

        final_score = max(1, min(10, final_score))

        logger.bind(tag=TAG).debug(f"rule score: {content[:30]}... -> {final_score}")

        return final_score
