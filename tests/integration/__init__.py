"""Integration tests: a real Elasticsearch node.

These tests require a node at $ELASTICLOG_TEST_URL (default
http://localhost:9200), for example:
    docker run -p 9200:9200 -e discovery.type=single-node \
        -e xpack.security.enabled=false elasticsearch:8.15.0

They are marked @pytest.mark.integration and skip when the node isn't up.
"""
