"""
Spoken Answer Evaluation
========================

Grades a learner's transcribed answer to an OPIc-style question on the OPIc
rating ladder (Novice Low through Advanced Low) and returns short, concrete
feedback.

The chat model does the grading. When the call fails, or the model returns a
grade that is not on the ladder, a heuristic estimator based on length,
discourse markers and grammatical range takes over so the learner always gets
a result.

API Endpoints:
- POST /evaluate: grade one transcript, optionally against its question
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request

from ..deps import field_text, get_openai, read_body
from ..errors import VendorError
from ..openai_client import OpenAIClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["evaluate"])

# OPIc rating ladder, lowest to highest
GRADES: List[str] = ["NL", "NM", "NH", "IL", "IM1", "IM2", "IM3", "IH", "AL"]

# Transcripts longer than this are cut before being sent to the model
MAX_TRANSCRIPT_CHARS = 4000


def extract_json_block(text: str) -> Dict[str, Any]:
	"""Extract a JSON object from raw model output.

	Tries the whole text, then a fenced ```json block, then the first
	``{...}`` span.

	Raises:
		ValueError: If no JSON object can be parsed.
	"""
	candidates = [text or ""]
	fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text or "")
	if fenced:
		candidates.append(fenced.group(1))
	braces = re.search(r"\{[\s\S]*\}", text or "")
	if braces:
		candidates.append(braces.group(0))
	for candidate in candidates:
		try:
			data = json.loads(candidate)
		except ValueError:
			continue
		if isinstance(data, dict):
			return data
	raise ValueError("Failed to parse JSON from model output")


def dedupe_transcript(text: str) -> str:
	"""Collapse repeated 1–3 word phrases and extra whitespace.

	Browser speech recognition tends to repeat phrases where interim and
	final results overlap.
	"""
	s = re.sub(r"\s+", " ", text or "").strip()
	if not s:
		return s
	patterns = [
		(r"\b(\w+\s+\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
		(r"\b(\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
		(r"\b(\w+)(?:\s+\1\b)+", r"\1"),
	]
	for pat, rep in patterns:
		s = re.sub(pat, rep, s, flags=re.IGNORECASE)
	return re.sub(r"\s+", " ", s).strip()


def heuristic_grade(transcript: str) -> Dict[str, Any]:
	"""Estimate an OPIc grade without the model.

	Returns a dict with ``grade``, ``score`` (0-100) and ``feedback``.
	"""
	text = (transcript or "").strip()
	if not text:
		return {
			"grade": "NL",
			"score": 0,
			"feedback": "No answer detected. Try to speak for at least a minute with a clear beginning, middle and end.",
		}
	words = re.findall(r"[A-Za-z']+", text)
	num_words = len(words)
	unique_words = len(set(w.lower() for w in words)) if words else 0
	type_token_ratio = (unique_words / num_words) if num_words else 0.0
	long_ratio = (len([w for w in words if len(w) >= 8]) / num_words) if num_words else 0.0
	sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
	avg_sentence_len = (num_words / len(sentences)) if sentences else num_words

	subords = len(re.findall(r"\b(although|though|whereas|while|because|since|unless|until|when|after|before|if)\b", text, re.IGNORECASE))
	relatives = len(re.findall(r"\b(who|which|that|whose|whom)\b", text, re.IGNORECASE))
	past = len(re.findall(r"\b(was|were|did|went|had|used to|\w+ed)\b", text, re.IGNORECASE))
	perfect = len(re.findall(r"\b(have|has|had)\s+\w+(?:ed|en)\b", text, re.IGNORECASE))
	linkers = len(re.findall(r"\b(however|therefore|moreover|actually|anyway|for example|for instance|on the other hand|in addition|so basically)\b", text, re.IGNORECASE))
	fillers = len(re.findall(r"\b(um+|uh+|er+|hmm+)\b", text, re.IGNORECASE))

	score = 0
	if num_words >= 150:
		score += 6
	elif num_words >= 100:
		score += 5
	elif num_words >= 60:
		score += 4
	elif num_words >= 30:
		score += 3
	elif num_words >= 10:
		score += 2
	else:
		score += 1
	score += min(4, subords)
	score += min(2, relatives)
	score += min(2, past // 3)
	score += min(2, perfect)
	score += min(3, linkers)
	if long_ratio > 0.12:
		score += 2
	elif long_ratio > 0.06:
		score += 1
	if type_token_ratio > 0.55:
		score += 1
	if avg_sentence_len >= 12:
		score += 1
	if num_words and fillers / num_words > 0.08:
		score -= 2
	score = max(0, score)

	thresholds = [2, 4, 6, 8, 10, 12, 14, 16]
	index = sum(1 for t in thresholds if score > t)
	grade = GRADES[index]

	suggestions: List[str] = []
	if num_words < 60:
		suggestions.append("Give a longer answer with a specific example or story.")
	if linkers < 1:
		suggestions.append("Connect ideas with words like however, for example or actually.")
	if past < 3:
		suggestions.append("Describe a past experience to show a range of tenses.")
	if subords < 2:
		suggestions.append("Use because, when or although to build longer sentences.")
	if fillers and num_words and fillers / num_words > 0.08:
		suggestions.append("Reduce fillers like um and uh; pause silently instead.")
	feedback = " ".join(suggestions[:2]) or "Clear, well-developed answer."
	return {"grade": grade, "score": round(min(100, score * 100 / 23)), "feedback": feedback}


def _build_evaluation_prompt(question: str, transcript: str) -> str:
	ladder = ", ".join(GRADES)
	return f"""
You are an experienced OPIc rater. Rate the candidate's spoken answer on the OPIc scale ({ladder}).

Consider task completion, length and organisation of discourse, range of tenses and vocabulary, accuracy and fluency. The answer is a speech-recognition transcript, so ignore punctuation and capitalisation.

Question:
{question or "(not provided)"}

Candidate transcript (verbatim):
{transcript}

Return STRICT JSON only:
{{
  "grade": "{'|'.join(GRADES)}",
  "score": number (0-100),
  "feedback": "one or two sentences with concrete advice",
  "corrections": [{{"original": string, "suggestion": string}}]
}}
""".strip()


def _safe_score(value: Any) -> Optional[float]:
	try:
		if value is None:
			return None
		return max(0.0, min(100.0, float(value)))
	except (TypeError, ValueError):
		return None


async def evaluate_answer(client: OpenAIClient, question: str, transcript: str) -> Dict[str, Any]:
	clean = dedupe_transcript(transcript)[:MAX_TRANSCRIPT_CHARS]
	try:
		raw = await client.chat(
			[{"role": "user", "content": _build_evaluation_prompt(question, clean)}],
			temperature=0.2,
		)
		data = extract_json_block(raw)
	except (VendorError, ValueError) as e:
		logger.warning("[EVALUATE] model grading failed, using heuristic: %s", e)
		return {**heuristic_grade(clean), "corrections": [], "source": "heuristic", "transcript": clean}

	grade = str(data.get("grade", "")).strip().upper()
	feedback = str(data.get("feedback") or "").strip() or None
	corrections = data.get("corrections")
	if not isinstance(corrections, list):
		corrections = []
	if grade not in GRADES:
		fallback = heuristic_grade(clean)
		return {
			"grade": fallback["grade"],
			"score": fallback["score"],
			"feedback": feedback or fallback["feedback"],
			"corrections": corrections,
			"source": "heuristic",
			"transcript": clean,
		}
	return {
		"grade": grade,
		"score": _safe_score(data.get("score")),
		"feedback": feedback,
		"corrections": corrections,
		"source": "model",
		"transcript": clean,
	}


@router.post("/evaluate")
async def evaluate(request: Request):
	body = await read_body(request)
	transcript = field_text(body, "transcript", "answer")
	if not transcript:
		raise HTTPException(status_code=400, detail="transcript required")
	question = field_text(body, "question", "prompt")
	client = get_openai(request)
	return await evaluate_answer(client, question, transcript)
