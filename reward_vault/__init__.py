"""Share-based custody vault with multi-token reward distribution.

- Users deposit an asset and receive shares of the pooled balance

- Reward tokens are distributed with per-share accumulators,
  so funding a reward never iterates over depositors

- See :py:class:`reward_vault.vault.RewardVault` to get started
"""
