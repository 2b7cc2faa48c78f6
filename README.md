# appsuite

Two parts in one package:

- **Review statistics** (`appsuite.reviews.stats`): in-memory aggregation of
  game reviews into the most reviewed games and the most used review
  languages.
- **Delivery server** (`appsuite.server`): a server for a food-delivery
  application (customers, restaurants and delivery workers). It runs as a
  leader plus replicas that keep a copy of the network state and elect a new
  leader with a ring algorithm over UDP when the leader goes down.

Only the Python standard library is needed at run time. Python 3.10 or later.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Review statistics

`appsuite.reviews.stats` provides:

- `TopReview(text, votes_helpful)`: one review and its helpful votes.
- `Language(review_count, top_reviews)`: reviews written in one language.
  `Language.merge(other)` adds the counts and keeps the ten most voted reviews.
- `Game(reviews, languages)`: a game's review count and a dict of language
  name to `Language`. `Game.merge(other)` adds the counts and keeps a single
  most voted review per language.
- `top_games(games, count)`: the `count` most reviewed games, ties broken by
  name, each with its three most used languages and their top review.
- `top_languages(languages, count)`: the `count` most used languages, ties
  broken by name, each with up to ten top reviews.

```python
from appsuite.reviews.stats import Game, Language, TopReview, top_games, top_languages

review = TopReview("Great game", 17)
game = Game(1, {"english": Language(1, [review])})
game.merge(Game(1, {"english": Language(1, [TopReview("Fine", 3)])}))

print(top_games({"Some Game": game}, 3))
# [{'game': 'Some Game', 'languages': [{'language': 'english', 'review_count': 2,
#   'top_review': 'Great game', 'top_review_votes': 17}], 'review_count': 2}]

print(top_languages({"english": Language(1, [review])}, 3))
# [{'language': 'english', 'review_count': 1,
#   'top_reviews': [{'review': 'Great game', 'votes': 17}]}]
```

### What this part does not do

There is no command for the review statistics, and the package does not read
review files or write a summary file. The records have to be built as
`Game` and `Language` objects in your own code and merged there; the
functions above only rank them and return plain dicts and lists, which can
be written out with `json.dump`.

## Delivery server

```
appsuite-server <id> <true|false>
```

`<id>` is the numeric server id; the flag says whether the node starts as
the leader. The addresses of each id come from `NodeConfig` in
`appsuite.server.node`: by default host `127.0.0.1`, TCP port `8080 + id`
and UDP port `9000 + id` (`NodeConfig.tcp_address`, `NodeConfig.udp_address`).
The ring has five servers, ids 1 to 5. From Python, `run_leader(config,
server_id)` and `run_replica(config, server_id)` run a node inside an
asyncio event loop.

Every TCP message is a single JSON line `{"title": ..., "payload": ...}`.

- A **leader** accepts TCP connections from customers, restaurants,
  delivery workers and replicas. It handles `login`, `login_delivery`,
  `register_delivery`, `new_restaurant`, `get_restaurants`,
  `get_deliveries`, `delivery_status`, `request_delivery`, `busy_delivery`,
  `free_delivery`, `new_replica`, `ping` and `ACK`. Customers, delivery
  workers and restaurants all take their ids from one counter. Nearby
  restaurants and delivery workers are those within a distance of 10; when
  no delivery worker is in range, all available ones are returned ordered by
  distance. Each replica's `ping` is answered with a `pong` carrying the
  whole network state. A node that becomes leader through an election
  answers the first line of each new connection with `HANDSHAKE`.
- A **replica** connects to the leader over TCP, announces itself with
  `new_replica`, pings the leader every half second and replaces its state
  with each `pong` it receives. When the leader connection is lost, the
  replicas run a ring election over UDP: the `election` message collects the
  ids of live servers around the ring, the highest id wins, and `new_leader`
  is passed on until it returns to the server that sent it. Every
  `election` and `new_leader` datagram is acknowledged with an `ack`; a
  neighbour that does not acknowledge within 0.3 seconds is marked as
  disconnected and skipped. A `get_leader` datagram is answered with the id
  of the current leader.

The modules can also be used on their own:

- `appsuite.server.messages`: `encode_message`, `decode_message`, `frame`
  and the message dataclasses (`UpdateNetworkState`, `Election`,
  `NewLeader`, `NeighborAck`, `RequestDelivery`, `FreeDeliveryWorker`).
- `appsuite.server.apps_info`: `DeliveryInfo` and `RestaurantData`.
- `appsuite.server.registry`: `Registry`, the bookkeeping of clients, and
  `distance_squared`.
- `appsuite.server.election`: `ElectionState`, the election logic without
  I/O, which returns `Outgoing` actions for the caller to perform, and
  `get_neighbor_id`.
- `appsuite.server.udp`: `UdpEndpoint`, `parse_datagram`, `build_ack`.
- `appsuite.server.connections`: `ClientSession`, `LeaderConnection` and
  `serve_connections`.