"""Shared builders for test payloads."""


def scorer_payload(overall, words=None, fluency=None, feedback=None):
    """Build a flat scorer payload.

    ``words`` is a list of (text, score) or (text, score, [(phoneme, score), ...]).
    """
    word_scores = []
    for word in words or []:
        entry = {"text": word[0], "score": word[1]}
        if len(word) > 2:
            entry["phonemes"] = [{"phoneme": p, "score": s} for p, s in word[2]]
        word_scores.append(entry)
    payload = {"utterance_score": overall, "word_scores": word_scores}
    if fluency is not None:
        payload["fluency_score"] = fluency
    if feedback is not None:
        payload["text_feedback"] = feedback
    return payload
