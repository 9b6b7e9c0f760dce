import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from blunote_lti.auth.tool_keys import ToolKeySet, generate_private_key_pem


def main():
    pem = generate_private_key_pem()
    keys = ToolKeySet(pem)

    # Single line so it can be pasted into .env
    print(f'LTI_TOOL_PRIVATE_KEY="{pem.strip()}"'.replace("\n", "\\n"))
    print(f"LTI_TOOL_KEY_ID={keys.key_id}")


if __name__ == "__main__":
    main()
