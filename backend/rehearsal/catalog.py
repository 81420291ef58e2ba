from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from rehearsal.errors import NotFoundError


@dataclass(frozen=True)
class QuestionItem:
    text: str
    reference_answer: str


@dataclass(frozen=True)
class Topic:
    id: str
    title: str
    pool: Tuple[QuestionItem, ...]


def _pool(pairs: Sequence[Tuple[str, str]]) -> Tuple[QuestionItem, ...]:
    return tuple(QuestionItem(text=q, reference_answer=a) for q, a in pairs)


TOPICS: Dict[str, Topic] = {
    "hr-interview": Topic(
        id="hr-interview",
        title="HR Interview",
        pool=_pool(
            [
                ("Tell me about yourself.", "Introduce yourself briefly and professionally"),
                ("Why do you want to join our company?", "Explain your motivation to join the company"),
                ("What are your strengths and weaknesses?", "List your strengths and weaknesses honestly"),
                ("Where do you see yourself in 5 years?", "Talk about your 5-year plan"),
                (
                    "Describe a challenging situation and how you handled it.",
                    "Describe a challenging situation and your solution",
                ),
                (
                    "How do you handle conflict in a team?",
                    "Describe constructive communication and resolution steps",
                ),
                ("Tell me about a time you showed leadership.", "Provide a concrete leadership example and impact"),
                (
                    "Describe a failure and what you learned.",
                    "Explain failure, take ownership, and describe learnings",
                ),
                (
                    "How do you prioritize tasks when everything is urgent?",
                    "Discuss frameworks and examples of prioritization",
                ),
                ("What motivates you at work?", "Share intrinsic and extrinsic motivators with examples"),
            ]
        ),
    ),
    "mock-interview": Topic(
        id="mock-interview",
        title="Mock Interview",
        pool=_pool(
            [
                ("What motivates you to work hard?", "Discuss what motivates you"),
                ("How do you handle stress and pressure?", "Explain how you manage stress"),
                ("Explain a time you worked in a team.", "Give an example of teamwork"),
                ("What's your biggest professional achievement?", "Highlight your professional achievement"),
                ("Why should we hire you?", "Explain why you are the best fit"),
                (
                    "Tell me about a time you disagreed with a decision.",
                    "Show constructive dissent and alignment after decision",
                ),
                ("Describe a situation where you went above and beyond.", "Quantify impact and initiative"),
                ("How do you stay current in your field?", "Mention courses, reading, projects, communities"),
                (
                    "Describe your ideal work environment.",
                    "Explain collaboration, focus, autonomy, psychological safety",
                ),
                ("What do you expect from your manager?", "Clarity, feedback, support, growth, autonomy"),
            ]
        ),
    ),
    "technical-interview": Topic(
        id="technical-interview",
        title="Technical Interview",
        pool=_pool(
            [
                (
                    "Explain OOP principles with examples.",
                    "Explain OOP concepts like inheritance, polymorphism, encapsulation, abstraction",
                ),
                ("What is the difference between HTTP and HTTPS?", "Describe HTTP vs HTTPS"),
                ("How do you optimize a slow SQL query?", "Explain SQL query optimization techniques"),
                ("What is the time complexity of binary search?", "State binary search time complexity"),
                (
                    "What is a race condition and how do you prevent it?",
                    "Define race conditions and use locks/transactions/atomics",
                ),
                (
                    "Explain indexing and its trade-offs in databases.",
                    "Cover B-tree indexes, selective columns, write overhead",
                ),
                ("What is the CAP theorem?", "Consistency, Availability, Partition tolerance trade-offs"),
                (
                    "Explain caching strategies for web apps.",
                    "Client/server caching, TTL, validation, CDN, cache-busting",
                ),
                ("Describe common OWASP Top 10 vulnerabilities.", "List examples like SQLi, XSS, CSRF, auth issues"),
            ]
        ),
    ),
    "web-frontend": Topic(
        id="web-frontend",
        title="Frontend Development Interview",
        pool=_pool(
            [
                (
                    "Explain the difference between React functional and class components.",
                    "Functional components use hooks, class components use lifecycle methods",
                ),
                (
                    "How do you handle state management in a large React application?",
                    "Use Redux, Context API, or state management libraries",
                ),
                (
                    "What are the key differences between CSS Grid and Flexbox?",
                    "Grid is 2D layout system, Flexbox is 1D layout system",
                ),
                (
                    "How do you optimize the performance of a React application?",
                    "Code splitting, lazy loading, memoization, bundle optimization",
                ),
                (
                    "Explain the concept of virtual DOM and its benefits.",
                    "Virtual DOM is a JavaScript representation of the real DOM for efficient updates",
                ),
                ("What is reconciliation in React?", "Diffing algorithm to update DOM efficiently"),
                (
                    "Explain code splitting and route-based chunking.",
                    "Dynamic import(), split bundles by route/components",
                ),
                (
                    "What are controlled vs uncontrolled components?",
                    "Controlled via state/props vs DOM-managed inputs",
                ),
                (
                    "How do you prevent layout thrashing in the browser?",
                    "Batch DOM reads/writes, use requestAnimationFrame, CSS transforms",
                ),
            ]
        ),
    ),
    "web-backend": Topic(
        id="web-backend",
        title="Backend Development Interview",
        pool=_pool(
            [
                ("Explain RESTful API design principles.", "Use HTTP methods, stateless, resource-based URLs"),
                (
                    "How do you handle database migrations in a production environment?",
                    "Version control, rollback strategies, testing in staging",
                ),
                (
                    "What is the difference between SQL and NoSQL databases?",
                    "SQL is relational, NoSQL is non-relational and flexible",
                ),
                (
                    "How do you implement authentication and authorization?",
                    "JWT tokens, OAuth, role-based access control",
                ),
                (
                    "Explain microservices architecture and its benefits.",
                    "Independent services, scalability, technology diversity",
                ),
                (
                    "Explain idempotency and why it matters in APIs.",
                    "Same result on retries; use PUT, keys, deduplication",
                ),
                (
                    "How do you design pagination and filtering for APIs?",
                    "Query params, cursors/offsets, consistent sorting",
                ),
                ("What is eventual consistency?", "Consistency delay across replicas; trade-offs"),
                (
                    "Explain message queues and when to use them.",
                    "Decouple services, reliability, buffering, async processing",
                ),
                (
                    "How do you secure APIs against common attacks?",
                    "AuthN/Z, rate limiting, input validation, headers, TLS",
                ),
            ]
        ),
    ),
}


def list_topics() -> List[Dict[str, object]]:
    return [{"id": t.id, "title": t.title, "size": len(t.pool)} for t in TOPICS.values()]


def get_topic(topic_id: str) -> Topic:
    topic = TOPICS.get(topic_id)
    if topic is None:
        raise NotFoundError(f"Unknown topic: {topic_id}")
    return topic
