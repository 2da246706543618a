"""
Clubs, follows and memberships.

- A club always has exactly one CLUB_ADMIN; club and admin account are created
  and deleted together.
- Follow and membership are independent relations. Membership is only granted
  by accepting an application.
"""
