import os
import random
import time

import requests

BASE_URL = os.getenv("SHEETPREP_URL", "http://127.0.0.1:8000")

# Must appear in the server's ADMIN_EMAILS for authoring calls to succeed.
ADMIN_ID = "seed-admin"
ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@sheetprep.local")

# Demo sheet: topic -> sub-pattern -> problems (title, url, platform, platformId)
SHEET = {
    "title": "Core Patterns",
    "description": "Demo sheet created by generate_test_data.py",
    "topics": {
        "Arrays": {
            "Two Pointers": [
                ("Two Sum II", "https://leetcode.com/problems/two-sum-ii-input-array-is-sorted/", "LeetCode", "167"),
                ("3Sum", "https://leetcode.com/problems/3sum/", "LeetCode", "15"),
                ("Container With Most Water", "https://leetcode.com/problems/container-with-most-water/", "LeetCode", "11"),
            ],
            "Sliding Window": [
                ("Longest Substring Without Repeating Characters",
                 "https://leetcode.com/problems/longest-substring-without-repeating-characters/", "LeetCode", "3"),
                ("Maximum of all subarrays of size k",
                 "https://www.geeksforgeeks.org/sliding-window-maximum-maximum-of-all-subarrays-of-size-k/", "GFG", ""),
            ],
        },
        "Graphs": {
            "BFS": [
                ("Rotting Oranges", "https://leetcode.com/problems/rotting-oranges/", "LeetCode", "994"),
                ("Word Ladder", "https://leetcode.com/problems/word-ladder/", "LeetCode", "127"),
            ],
            "Topological Sort": [
                ("Course Schedule", "https://leetcode.com/problems/course-schedule/", "LeetCode", "207"),
            ],
        },
    },
}

USERS = {
    "alice": 0.8,
    "peter": 0.5,
    "marco": 0.2,
}


def test_connection():
    try:
        r = requests.get(BASE_URL, timeout=5)
        print(f"Server status: {r.status_code}")
        return r.status_code == 200
    except requests.RequestException as e:
        print(f"Server connection error: {e}")
        return False


def sign_in(user_id, email=None):
    r = requests.post(f"{BASE_URL}/session", json={
        "user_id": user_id,
        "email": email or f"{user_id}@test.com",
        "display_name": user_id.title(),
    }, timeout=10)
    if not r.ok:
        print(f"Sign-in failed for {user_id}: {r.status_code}")
        return None
    return r.json()


def create_child(parent_id, title):
    r = requests.post(f"{BASE_URL}/admin/items/{parent_id}/children", json={
        "actor_id": ADMIN_ID,
        "title": title,
    }, timeout=10)
    r.raise_for_status()
    return r.json()["id"]


def seed_catalog():
    r = requests.post(f"{BASE_URL}/admin/sheets", json={
        "actor_id": ADMIN_ID,
        "title": SHEET["title"],
        "description": SHEET["description"],
    }, timeout=10)
    r.raise_for_status()
    sheet_id = r.json()["id"]
    print(f"Created sheet {sheet_id}")

    problem_ids = []
    for topic_title, subs in SHEET["topics"].items():
        topic_id = create_child(sheet_id, topic_title)
        for sub_title, problems in subs.items():
            sub_id = create_child(topic_id, sub_title)
            batch = [
                {"title": title, "url": url, "platform": platform, "platformId": pid}
                for title, url, platform, pid in problems
            ]
            r = requests.post(f"{BASE_URL}/admin/items/{sub_id}/import", json={
                "actor_id": ADMIN_ID,
                "payload": batch,
            }, timeout=10)
            if r.ok:
                added = r.json()["items"]
                problem_ids.extend(item["id"] for item in added)
                print(f" → {topic_title}/{sub_title}: {len(added)} problems")
            else:
                print(f" → Import error for {sub_title}: {r.status_code} {r.text}")
    return sheet_id, problem_ids


def simulate_progress(user_id, solve_rate, problem_ids):
    solved = 0
    for problem_id in problem_ids:
        if random.random() >= solve_rate:
            continue
        resp = requests.post(f"{BASE_URL}/progress/solve", json={
            "user_id": user_id,
            "problem_id": problem_id,
        }, timeout=10)
        if resp.ok:
            solved += 1
        else:
            print(f" → Solve error: {resp.status_code}")
        time.sleep(0.05)
    print(f"[{user_id}] solved {solved} of {len(problem_ids)} problems")


def run_seed():
    if not test_connection():
        return

    admin = sign_in(ADMIN_ID, ADMIN_EMAIL)
    if not admin or admin.get("role") != "admin":
        print(f"{ADMIN_EMAIL} is not in ADMIN_EMAILS on the server; cannot author the catalog.")
        return

    _, problem_ids = seed_catalog()

    for user, rate in USERS.items():
        if sign_in(user):
            simulate_progress(user, rate, problem_ids)

    r = requests.get(f"{BASE_URL}/admin/users", params={"actor_id": ADMIN_ID}, timeout=10)
    if r.ok:
        users = r.json()["users"]
        print(f"\nProfiles: {len(users)}")
        for entry in users:
            print(f"  {entry['uid']}: {entry['solved']} solved, streak {entry['current_streak']}")
    else:
        print("Failed to list users")


if __name__ == "__main__":
    run_seed()
