"""Drive one conversation against a running server and print the code panel per gate."""
import httpx

BASE = "http://localhost:8000/api/v1"
CONV = "demo-conversation"
c = httpx.Client(timeout=60)

MESSAGE = """Here is the helper:

<!--ARTIFACT:{"title":"add.js","language":"javascript"}-->
```javascript
function add(a, b) {
  // sum two numbers
  const result = a + b;
  return result;
}
```
<!--/ARTIFACT-->
"""

r = c.post(f"{BASE}/conversations/{CONV}/ingest", json={"text": MESSAGE, "is_final": True})
r.raise_for_status()
artifact = r.json()["artifacts"][0]
aid = artifact["id"]
print(f"Artifact {artifact['title']} ({aid}), gates: {artifact['total_gates']}")

while True:
    code = c.get(f"{BASE}/conversations/{CONV}/artifacts/{aid}/code").json()
    progress = code["progress"]
    print(f"\n--- level {progress['unlock_level']}/{progress['total_gates']}: {progress['description']} ---")
    print(code["code"])
    quiz = progress["current_quiz"]
    if progress["is_unlocked"] or quiz is None:
        break
    print(f"\nQ: {quiz['question']}")
    for o in quiz["options"]:
        print(f"  {o['label']}) {o['text']}")
    for o in quiz["options"]:
        r = c.post(
            f"{BASE}/conversations/{CONV}/artifacts/{aid}/answer",
            json={"quiz_id": quiz["id"], "answer": o["label"]},
        )
        result = r.json()
        print(f"  tried {o['label']}: {'correct' if result['is_correct'] else 'wrong'}")
        if result["is_correct"]:
            break

c.delete(f"{BASE}/conversations/{CONV}", params={"forget": "true"})
